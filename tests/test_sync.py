"""Unit tests for sync.py - CTFd challenge and page synchronization."""

import json

import pytest
from unittest.mock import AsyncMock, call

from bindings import BindingStore
from errors import CTFdAPIError, GitHubAPIError
from extraction import extract_challenge_config, extract_page_config
from models import ChallengeRecord, ChallengeType, MappingTable
from sync import (
    ChallengeSync,
    PageSync,
    challenge_params,
    instance_type,
    page_params,
    strip_description,
    template_name,
)

from conftest import NAMESPACE, challenge_data, make_configmap, page_data


def challenge_config(slug="chal-foo", **overrides):
    return extract_challenge_config(
        make_configmap(slug, challenge_data(slug, **overrides), label="challenge-config")
    )


def page_config(slug="rules", **overrides):
    return extract_page_config(
        make_configmap(slug, page_data(slug, **overrides), label="page-config")
    )


class TestStripDescription:
    """Tests for strip_description."""

    def test_strips_heading_lines(self):
        assert strip_description("# Foo\n\nBody") == "Body"

    def test_keeps_multiline_body(self):
        assert strip_description("# Foo\n\nLine 1\nLine 2") == "Line 1\nLine 2"

    def test_two_lines_untouched(self):
        assert strip_description("# Foo\nBody") == "# Foo\nBody"

    def test_empty(self):
        assert strip_description("") == ""


class TestInstanceType:
    """Tests for instance_type and template_name."""

    def _record(self, **kwargs):
        return ChallengeRecord(
            slug="chal-foo", name="Foo", type=ChallengeType.INSTANCED, **kwargs
        )

    def test_defaults_to_none(self):
        assert instance_type(self._record()) == "none"

    def test_plain_type(self):
        assert instance_type(self._record(instanced_type="web")) == "web"

    def test_type_with_subdomains(self):
        record = self._record(instanced_type="web", instanced_subdomains=("a", "b"))
        assert instance_type(record) == "web:a,b"

    def test_qualified_subdomains_replace_type(self):
        record = self._record(
            instanced_type="web", instanced_subdomains=("web:a", "tcp:b")
        )
        assert instance_type(record) == "web:a,tcp:b"

    def test_template_name_defaults_to_slug(self):
        assert template_name(self._record()) == "chal-foo"
        assert template_name(self._record(instanced_name="chal-foo")) == "chal-foo"

    def test_template_name_override(self):
        assert template_name(self._record(instanced_name="foo-tpl")) == "foo-tpl"


class TestChallengeParams:
    """Tests for challenge_params."""

    def test_standard_challenge(self):
        params = challenge_params(challenge_config(), MappingTable())

        assert params["name"] == "Foo"
        assert params["category"] == "web"
        assert params["description"] == "Body"
        assert params["value"] == 100
        assert params["initial"] == 100
        assert params["decay"] == 10
        assert params["minimum"] == 50
        assert params["state"] == "visible"
        assert params["type"] == "dynamic"
        assert "template_name" not in params

    def test_hidden_when_disabled(self):
        params = challenge_params(challenge_config(enabled=False), MappingTable())
        assert params["state"] == "hidden"

    def test_mapped_category(self):
        mapping = MappingTable(
            categories={"web": "Web"}, difficulty_categories={"intro": "Intro"}
        )
        assert challenge_params(challenge_config(), mapping)["category"] == "Web"
        assert (
            challenge_params(challenge_config(difficulty="intro"), mapping)["category"]
            == "Intro"
        )

    def test_instanced_challenge(self):
        config = challenge_config(type="instanced", instanced_type="tcp")
        params = challenge_params(config, MappingTable())

        assert params["type"] == "kubectf"
        assert params["template_name"] == "chal-foo"
        assert params["instance_type"] == "tcp"

    def test_patch_omits_type(self):
        config = challenge_config(type="instanced")
        params = challenge_params(config, MappingTable(), include_type=False)

        assert "type" not in params
        assert params["instance_type"] == "none"


class TestPageParams:
    def test_hidden_is_inverse_of_enabled(self):
        assert page_params(page_config().page)["hidden"] is False
        assert page_params(page_config(enabled=False).page)["hidden"] is True


@pytest.mark.asyncio
class TestChallengeSync:
    """Tests for ChallengeSync."""

    @pytest.fixture
    def bindings(self, cluster):
        return BindingStore(cluster, NAMESPACE, "ctfd-challenges")

    @pytest.fixture
    def sync(self, cluster, mock_ctfd, mock_github, bindings):
        return ChallengeSync(mock_ctfd, mock_github, cluster, NAMESPACE, bindings)

    async def test_upsert_creates_unbound_challenge(
        self, sync, mock_ctfd, bindings
    ):
        remote_id = await sync.upsert(challenge_config())

        assert remote_id == 7
        mock_ctfd.refresh_session.assert_awaited()
        mock_ctfd.create_challenge.assert_awaited_once()
        params = mock_ctfd.create_challenge.call_args.args[0]
        assert params["description"] == "Body"
        assert params["type"] == "dynamic"
        mock_ctfd.create_flag.assert_awaited_once_with(
            {
                "challenge": 7,
                "content": "CTF{foo}",
                "type": "static",
                "data": "case_insensitive",
            }
        )
        mock_ctfd.create_tag.assert_awaited_once_with(7, "intro")
        mock_ctfd.patch_challenge.assert_not_called()
        assert await bindings.get_binding("chal-foo") == 7

    async def test_case_sensitive_flag_has_no_data(self, sync, mock_ctfd):
        config = challenge_config(flag=[{"flag": "CTF{Exact}", "case_sensitive": True}])
        await sync.upsert(config)

        assert mock_ctfd.create_flag.call_args.args[0]["data"] == ""

    async def test_upsert_updates_bound_challenge(self, sync, mock_ctfd, bindings):
        await bindings.set_binding("chal-foo", 7)
        mock_ctfd.list_challenges.return_value = [{"id": 7}]
        mock_ctfd.list_challenge_files.return_value = [{"id": 1}, {"id": 2}]
        mock_ctfd.list_challenge_flags.return_value = [{"id": 5}]
        mock_ctfd.list_tags.return_value = [{"id": 9, "value": "old"}]

        remote_id = await sync.upsert(challenge_config(name="Foo v2"))

        assert remote_id == 7
        mock_ctfd.create_challenge.assert_not_called()
        challenge_id, params = mock_ctfd.patch_challenge.call_args.args
        assert challenge_id == 7
        assert params["name"] == "Foo v2"
        assert "type" not in params
        mock_ctfd.delete_file.assert_has_awaits([call(1), call(2)])
        mock_ctfd.delete_flag.assert_awaited_once_with(5)
        mock_ctfd.delete_tag.assert_awaited_once_with(9)
        mock_ctfd.create_flag.assert_awaited_once()
        mock_ctfd.create_tag.assert_awaited_once_with(7, "intro")

    async def test_update_reuploads_when_missing_remotely(
        self, sync, mock_ctfd, bindings
    ):
        await bindings.set_binding("chal-foo", 4)
        mock_ctfd.list_challenges.return_value = [{"id": 1}]

        remote_id = await sync.upsert(challenge_config())

        assert remote_id == 7
        mock_ctfd.create_challenge.assert_awaited_once()
        mock_ctfd.patch_challenge.assert_not_called()
        assert await bindings.get_binding("chal-foo") == 7

    async def test_update_listing_failure_propagates(self, sync, mock_ctfd, bindings):
        await bindings.set_binding("chal-foo", 7)
        mock_ctfd.list_challenges.side_effect = CTFdAPIError("down", 502)

        with pytest.raises(CTFdAPIError):
            await sync.upsert(challenge_config())
        mock_ctfd.create_challenge.assert_not_called()

    async def test_create_failure_leaves_binding(self, sync, mock_ctfd, bindings):
        mock_ctfd.create_challenge.side_effect = CTFdAPIError("bad", 400)

        with pytest.raises(CTFdAPIError):
            await sync.upsert(challenge_config())
        assert await bindings.get_binding("chal-foo") == 0

    async def test_files_uploaded_in_one_request(self, sync, mock_ctfd, mock_github):
        mock_github.get_dir_contents.return_value = [
            {"name": ".gitkeep", "type": "file"},
            {"name": "nested", "type": "dir"},
            {"name": "handout.zip", "type": "file"},
            {"name": "source.py", "type": "file"},
        ]
        mock_github.get_file_bytes.side_effect = [b"zip", b"py"]

        await sync.upsert(challenge_config())

        mock_github.get_dir_contents.assert_awaited_once_with(
            "challenges/chal-foo/k8s/files"
        )
        mock_ctfd.upload_files.assert_awaited_once_with(
            7, [("handout.zip", b"zip"), ("source.py", b"py")]
        )

    async def test_missing_files_directory_means_no_files(
        self, sync, mock_ctfd, mock_github
    ):
        mock_github.get_dir_contents.side_effect = GitHubAPIError("missing", 404)

        await sync.upsert(challenge_config())

        mock_ctfd.upload_files.assert_not_called()
        mock_ctfd.create_flag.assert_awaited_once()

    async def test_files_listing_failure_propagates(self, sync, mock_github):
        mock_github.get_dir_contents.side_effect = GitHubAPIError("rate limited", 403)

        with pytest.raises(GitHubAPIError):
            await sync.upsert(challenge_config())

    async def test_single_file_failure_is_skipped(self, sync, mock_ctfd, mock_github):
        mock_github.get_dir_contents.return_value = [
            {"name": "a.txt", "type": "file"},
            {"name": "b.txt", "type": "file"},
        ]
        mock_github.get_file_bytes.side_effect = [GitHubAPIError("gone", 404), b"b"]

        await sync.upsert(challenge_config())

        mock_ctfd.upload_files.assert_awaited_once_with(7, [("b.txt", b"b")])

    async def test_tag_failures_are_skipped(self, sync, mock_ctfd, bindings):
        mock_ctfd.create_tag.side_effect = [CTFdAPIError("dup", 400), {"id": 2}]

        await sync.upsert(challenge_config(tags=["one", "", "two"]))

        assert mock_ctfd.create_tag.await_count == 2
        assert await bindings.get_binding("chal-foo") == 7

    async def test_prerequisites_resolved_to_ids(self, sync, mock_ctfd, bindings):
        await bindings.set_binding("warmup", 2)

        await sync.upsert(challenge_config(prerequisites=["warmup", "unknown"]))

        params = mock_ctfd.create_challenge.call_args.args[0]
        assert params["requirements"] == {"prerequisites": [2]}

    async def test_no_requirements_without_prerequisites(self, sync, mock_ctfd):
        await sync.upsert(challenge_config())
        assert "requirements" not in mock_ctfd.create_challenge.call_args.args[0]

    async def test_category_uses_mapping_table(self, sync, mock_ctfd, cluster):
        cluster.put(
            make_configmap("mapping-map", {"categories": json.dumps({"web": "Web"})})
        )
        await sync.upsert(challenge_config())

        assert mock_ctfd.create_challenge.call_args.args[0]["category"] == "Web"

    async def test_disable_hides_bound_challenge(self, sync, mock_ctfd, bindings):
        await bindings.set_binding("pwn-101", 11)

        await sync.disable(challenge_config("pwn-101"))

        mock_ctfd.patch_challenge.assert_awaited_once_with(11, {"state": "hidden"})
        assert await bindings.get_binding("pwn-101") == 11

    async def test_disable_unbound_is_noop(self, sync, mock_ctfd):
        await sync.disable(challenge_config("pwn-101"))
        mock_ctfd.patch_challenge.assert_not_called()


@pytest.mark.asyncio
class TestPageSync:
    """Tests for PageSync."""

    @pytest.fixture
    def bindings(self, cluster):
        return BindingStore(cluster, NAMESPACE, "ctfd-pages")

    @pytest.fixture
    def sync(self, mock_ctfd, bindings):
        return PageSync(mock_ctfd, bindings)

    async def test_upsert_creates_page(self, sync, mock_ctfd, bindings):
        remote_id = await sync.upsert(page_config())

        assert remote_id == 3
        params = mock_ctfd.create_page.call_args.args[0]
        assert params["title"] == "Rules"
        assert params["content"] == "Be nice."
        assert params["hidden"] is False
        assert await bindings.get_binding("rules") == 3

    async def test_upsert_patches_bound_page(self, sync, mock_ctfd, bindings):
        await bindings.set_binding("rules", 3)
        mock_ctfd.list_pages.return_value = [{"id": 3}]

        assert await sync.upsert(page_config(title="House rules")) == 3

        mock_ctfd.create_page.assert_not_called()
        page_id, params = mock_ctfd.patch_page.call_args.args
        assert page_id == 3
        assert params["title"] == "House rules"

    async def test_update_reuploads_missing_page(self, sync, mock_ctfd, bindings):
        await bindings.set_binding("rules", 8)

        await sync.upsert(page_config())

        mock_ctfd.create_page.assert_awaited_once()
        assert await bindings.get_binding("rules") == 3

    async def test_delete_removes_page_and_resets_binding(
        self, sync, mock_ctfd, bindings, cluster
    ):
        await bindings.set_binding("rules", 3)

        await sync.delete(page_config())

        mock_ctfd.delete_page.assert_awaited_once_with(3)
        assert cluster.data("ctfd-pages")["rules"] == "0"

    async def test_delete_unbound_is_noop(self, sync, mock_ctfd):
        await sync.delete(page_config())
        mock_ctfd.delete_page.assert_not_called()
