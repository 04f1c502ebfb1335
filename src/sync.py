"""
Remote Sync Adapter - drives CTFd to match challenge and page definitions.

Each entity is keyed by its slug and is either absent from CTFd or bound to a
remote id recorded in a binding ConfigMap. Challenges are never deleted, only
hidden. Sub-resources (files, flags, tags) are replaced wholesale on update,
so a failure part way through can leave a challenge without them until the
next event for it.
"""

import logging
from typing import Any, Dict, List, Tuple

from bindings import UNBOUND, BindingStore, load_mapping_table
from errors import CTFdAPIError, GitHubAPIError
from models import ChallengeConfig, ChallengeRecord, MappingTable, PageConfig, PageRecord

logger = logging.getLogger(__name__)

SKIPPED_FILES = {".gitignore", ".gitkeep"}

STANDARD_CHALLENGE_TYPE = "dynamic"
INSTANCED_CHALLENGE_TYPE = "kubectf"


def strip_description(description: str) -> str:
    """Drop the first two lines (the README heading) when there is a body after them."""
    lines = description.split("\n")
    if len(lines) > 2:
        return "\n".join(lines[2:])
    return description


def template_name(record: ChallengeRecord) -> str:
    if record.instanced_name and record.instanced_name != record.slug:
        return record.instanced_name
    return record.slug


def instance_type(record: ChallengeRecord) -> str:
    """
    Serialize the instance type and its subdomains.

    A first subdomain containing ':' means the list is already fully
    qualified and replaces the type.
    """
    value = record.instanced_type or "none"
    subdomains = list(record.instanced_subdomains)
    if subdomains:
        if ":" in subdomains[0]:
            value = ",".join(subdomains)
        else:
            value = f"{value}:{','.join(subdomains)}"
    return value


def challenge_params(
    config: ChallengeConfig, mapping: MappingTable, include_type: bool = True
) -> Dict[str, Any]:
    """Core CTFd challenge fields. The type is only sent on creation."""
    record = config.challenge
    params: Dict[str, Any] = {
        "name": record.name,
        "category": mapping.category_name(record.category, record.difficulty),
        "description": strip_description(config.description),
        "value": record.points,
        "initial": record.points,
        "decay": record.decay,
        "minimum": record.min_points,
        "state": "visible" if record.enabled else "hidden",
        "connection_info": record.connection,
    }
    if include_type:
        params["type"] = (
            INSTANCED_CHALLENGE_TYPE if record.instanced else STANDARD_CHALLENGE_TYPE
        )
    if record.instanced:
        params["template_name"] = template_name(record)
        params["instance_type"] = instance_type(record)
    return params


def flag_params(challenge_id: int, content: str, case_sensitive: bool) -> Dict[str, Any]:
    return {
        "challenge": challenge_id,
        "content": content,
        "type": "static",
        "data": "" if case_sensitive else "case_insensitive",
    }


def page_params(page: PageRecord) -> Dict[str, Any]:
    return {
        "title": page.title,
        "route": page.route,
        "content": page.content,
        "format": page.format,
        "draft": page.draft,
        "auth_required": page.auth_required,
        "nonce": page.nonce,
        "hidden": not page.enabled,
    }


def _remote_ids(entities: List[Dict[str, Any]]) -> set:
    return {entity.get("id") for entity in entities}


class ChallengeSync:
    """Creates, updates and hides CTFd challenges."""

    def __init__(self, ctfd, github, cluster, namespace: str, bindings: BindingStore):
        self.ctfd = ctfd
        self.github = github
        self.cluster = cluster
        self.namespace = namespace
        self.bindings = bindings

    async def upsert(self, config: ChallengeConfig) -> int:
        """Create the challenge if unbound, otherwise update it. Returns the remote id."""
        await self.ctfd.refresh_session()
        bound_id = await self.bindings.get_binding(config.challenge.slug)
        if bound_id == UNBOUND:
            return await self._upload(config)
        return await self._update(config, bound_id)

    async def upload(self, config: ChallengeConfig) -> int:
        await self.ctfd.refresh_session()
        return await self._upload(config)

    async def update(self, config: ChallengeConfig) -> int:
        await self.ctfd.refresh_session()
        bound_id = await self.bindings.get_binding(config.challenge.slug)
        if bound_id == UNBOUND:
            return await self._upload(config)
        return await self._update(config, bound_id)

    async def disable(self, config: ChallengeConfig) -> None:
        """Hide a bound challenge. The binding is kept so a re-add patches it."""
        slug = config.challenge.slug
        bound_id = await self.bindings.get_binding(slug)
        if bound_id == UNBOUND:
            logger.info(f"Challenge {slug} is not uploaded, nothing to disable")
            return

        await self.ctfd.refresh_session()
        logger.info(f"Disabling challenge {slug} ({bound_id}) in CTFd")
        await self.ctfd.patch_challenge(bound_id, {"state": "hidden"})
        logger.info(f"Challenge {slug} hidden in CTFd")

    async def _upload(self, config: ChallengeConfig) -> int:
        record = config.challenge
        mapping = await load_mapping_table(self.cluster, self.namespace)

        params = challenge_params(config, mapping)
        requirements = await self._requirements(record)
        if requirements:
            params["requirements"] = requirements

        logger.info(f"Uploading challenge {record.slug}")
        created = await self.ctfd.create_challenge(params)
        challenge_id = created["id"]

        await self._upload_files(challenge_id, config)
        await self._upload_flags(challenge_id, record)
        await self._upload_tags(challenge_id, record)

        await self.bindings.set_binding(record.slug, challenge_id)
        logger.info(f"Uploaded challenge {record.slug} with ID {challenge_id}")
        return challenge_id

    async def _update(self, config: ChallengeConfig, challenge_id: int) -> int:
        record = config.challenge

        remote = await self.ctfd.list_challenges()
        if challenge_id not in _remote_ids(remote):
            logger.info(
                f"Challenge {record.slug} bound to {challenge_id} is missing "
                "from CTFd, uploading it again"
            )
            return await self._upload(config)

        mapping = await load_mapping_table(self.cluster, self.namespace)
        params = challenge_params(config, mapping, include_type=False)
        requirements = await self._requirements(record)
        if requirements:
            params["requirements"] = requirements

        logger.info(f"Updating challenge {record.slug} ({challenge_id})")
        await self.ctfd.patch_challenge(challenge_id, params)

        for remote_file in await self.ctfd.list_challenge_files(challenge_id):
            await self.ctfd.delete_file(remote_file["id"])
        await self._upload_files(challenge_id, config)

        for remote_flag in await self.ctfd.list_challenge_flags(challenge_id):
            await self.ctfd.delete_flag(remote_flag["id"])
        await self._upload_flags(challenge_id, record)

        for remote_tag in await self.ctfd.list_tags(challenge_id):
            await self.ctfd.delete_tag(remote_tag["id"])
        await self._upload_tags(challenge_id, record)

        await self.bindings.set_binding(record.slug, challenge_id)
        logger.info(f"Updated challenge {record.slug} ({challenge_id})")
        return challenge_id

    async def _requirements(self, record: ChallengeRecord) -> Dict[str, Any]:
        """Resolve prerequisite slugs to remote ids."""
        if not record.prerequisites:
            return {}

        bindings = await self.bindings.list_bindings()
        prerequisites = []
        for slug in record.prerequisites:
            remote_id = bindings.get(slug, UNBOUND)
            if remote_id == UNBOUND:
                logger.warning(
                    f"Prerequisite {slug} of {record.slug} is not uploaded, skipping"
                )
                continue
            prerequisites.append(remote_id)

        if not prerequisites:
            return {}
        return {"prerequisites": prerequisites}

    async def collect_files(self, config: ChallengeConfig) -> List[Tuple[str, bytes]]:
        """
        Fetch the challenge's attachments from GitHub.

        A missing files directory means no attachments. A file that cannot be
        fetched is logged and left out.
        """
        directory = config.files_dir_path
        try:
            entries = await self.github.get_dir_contents(directory)
        except GitHubAPIError as e:
            if e.not_found:
                logger.debug(f"No files directory for {config.challenge.slug}")
                return []
            raise

        files = []
        for entry in entries:
            name = entry.get("name", "")
            if entry.get("type") != "file" or not name or name in SKIPPED_FILES:
                continue
            try:
                content = await self.github.get_file_bytes(f"{directory}/{name}")
            except GitHubAPIError as e:
                logger.warning(f"Error getting file {name}: {e}")
                continue
            files.append((name, content))
        return files

    async def _upload_files(self, challenge_id: int, config: ChallengeConfig) -> None:
        files = await self.collect_files(config)
        if not files:
            return
        logger.info(
            f"Uploading {len(files)} file(s) for {config.challenge.slug}: "
            f"{', '.join(name for name, _ in files)}"
        )
        await self.ctfd.upload_files(challenge_id, files)

    async def _upload_flags(self, challenge_id: int, record: ChallengeRecord) -> None:
        for flag in record.flags:
            await self.ctfd.create_flag(
                flag_params(challenge_id, flag.content, flag.case_sensitive)
            )

    async def _upload_tags(self, challenge_id: int, record: ChallengeRecord) -> None:
        for tag in record.tags:
            if not tag:
                logger.debug(f"Empty tag on {record.slug}, skipping")
                continue
            try:
                await self.ctfd.create_tag(challenge_id, tag)
            except CTFdAPIError as e:
                logger.warning(f"Error uploading tag {tag} for {record.slug}: {e}")


class PageSync:
    """Creates, updates and deletes CTFd pages."""

    def __init__(self, ctfd, bindings: BindingStore):
        self.ctfd = ctfd
        self.bindings = bindings

    async def upsert(self, config: PageConfig) -> int:
        await self.ctfd.refresh_session()
        bound_id = await self.bindings.get_binding(config.slug)
        if bound_id == UNBOUND:
            return await self._upload(config)
        return await self._update(config, bound_id)

    async def upload(self, config: PageConfig) -> int:
        await self.ctfd.refresh_session()
        return await self._upload(config)

    async def update(self, config: PageConfig) -> int:
        await self.ctfd.refresh_session()
        bound_id = await self.bindings.get_binding(config.slug)
        if bound_id == UNBOUND:
            return await self._upload(config)
        return await self._update(config, bound_id)

    async def delete(self, config: PageConfig) -> None:
        """Delete a bound page and reset its binding."""
        bound_id = await self.bindings.get_binding(config.slug)
        if bound_id == UNBOUND:
            logger.info(f"Page {config.slug} is not uploaded, nothing to delete")
            return

        await self.ctfd.refresh_session()
        await self.ctfd.delete_page(bound_id)
        await self.bindings.clear_binding(config.slug)
        logger.info(f"Deleted CTFd page {config.slug} ({bound_id})")

    async def _upload(self, config: PageConfig) -> int:
        created = await self.ctfd.create_page(page_params(config.page))
        page_id = created["id"]
        await self.bindings.set_binding(config.slug, page_id)
        logger.info(f"Uploaded CTFd page {config.slug} with ID {page_id}")
        return page_id

    async def _update(self, config: PageConfig, page_id: int) -> int:
        remote = await self.ctfd.list_pages()
        if page_id not in _remote_ids(remote):
            logger.info(
                f"Page {config.slug} bound to {page_id} is missing from CTFd, "
                "uploading it again"
            )
            return await self._upload(config)

        await self.ctfd.patch_page(page_id, page_params(config.page))
        await self.bindings.set_binding(config.slug, page_id)
        logger.info(f"Updated CTFd page {config.slug} ({page_id})")
        return page_id
