"""Unit tests for extraction.py - ConfigMap classification and decoding."""

import json

import pytest

from errors import DecodeError, MissingFieldError, ValidationError
from extraction import classify_object, extract_challenge_config, extract_page_config
from models import ChallengeType, FlagSpec, ObjectKind

from conftest import challenge_data, make_configmap, page_data


class TestClassifyObject:
    """Tests for classify_object."""

    def test_challenge_label(self):
        obj = make_configmap("chal-foo", {}, label="challenge-config")
        assert classify_object(obj) is ObjectKind.CHALLENGE

    def test_page_label(self):
        obj = make_configmap("rules", {}, label="page-config")
        assert classify_object(obj) is ObjectKind.PAGE

    def test_other_label_value(self):
        obj = make_configmap("misc", {}, label="something-else")
        assert classify_object(obj) is ObjectKind.UNKNOWN

    def test_missing_label(self):
        obj = make_configmap("misc", {})
        assert classify_object(obj) is ObjectKind.UNKNOWN


class TestExtractChallengeConfig:
    """Tests for extract_challenge_config."""

    def test_full_challenge(self):
        obj = make_configmap("chal-foo", challenge_data(), label="challenge-config")
        config = extract_challenge_config(obj)

        assert config.name == "Foo"
        assert config.path == "challenges/chal-foo"
        assert config.repository == "org/challenges"
        assert config.files_dir_path == "challenges/chal-foo/k8s/files"

        record = config.challenge
        assert record.slug == "chal-foo"
        assert record.points == 100
        assert record.decay == 10
        assert record.min_points == 50
        assert record.enabled is True
        assert record.tags == ("intro",)
        assert record.flags == (FlagSpec(content="CTF{foo}", case_sensitive=False),)
        assert record.type is ChallengeType.STANDARD
        assert record.instanced is False

    def test_instanced_challenge(self):
        data = challenge_data(
            type="instanced",
            instanced_type="web",
            instanced_subdomains=["app", "api"],
        )
        config = extract_challenge_config(
            make_configmap("chal-foo", data, label="challenge-config")
        )
        assert config.challenge.instanced is True
        assert config.challenge.instanced_subdomains == ("app", "api")

    def test_defaults_for_absent_fields(self):
        data = challenge_data()
        data["challenge"] = json.dumps({"slug": "bare"})
        record = extract_challenge_config(
            make_configmap("bare", data, label="challenge-config")
        ).challenge

        assert record.enabled is False
        assert record.tags == ()
        assert record.flags == ()
        assert record.prerequisites == ()

    def test_null_lists_become_empty(self):
        data = challenge_data(tags=None, flag=None)
        record = extract_challenge_config(
            make_configmap("chal-foo", data, label="challenge-config")
        ).challenge
        assert record.tags == ()
        assert record.flags == ()

    def test_missing_path(self):
        data = challenge_data()
        del data["path"]
        with pytest.raises(MissingFieldError) as exc_info:
            extract_challenge_config(make_configmap("chal-foo", data))
        assert exc_info.value.field == "path"
        assert "path" in str(exc_info.value)

    def test_first_missing_key_reported(self):
        with pytest.raises(MissingFieldError) as exc_info:
            extract_challenge_config(make_configmap("chal-foo", {"description": ""}))
        assert exc_info.value.field == "name"

    def test_invalid_json(self):
        data = challenge_data()
        data["challenge"] = "{not json"
        with pytest.raises(DecodeError) as exc_info:
            extract_challenge_config(make_configmap("chal-foo", data))
        assert exc_info.value.field == "challenge"

    def test_non_object_blob(self):
        data = challenge_data()
        data["challenge"] = "[1, 2]"
        with pytest.raises(DecodeError):
            extract_challenge_config(make_configmap("chal-foo", data))

    def test_type_mismatch(self):
        data = challenge_data(points="lots")
        with pytest.raises(DecodeError) as exc_info:
            extract_challenge_config(make_configmap("chal-foo", data))
        assert "points" in str(exc_info.value)

    def test_missing_slug(self):
        data = challenge_data()
        data["challenge"] = json.dumps({"name": "No slug"})
        with pytest.raises(ValidationError):
            extract_challenge_config(make_configmap("chal-foo", data))


class TestExtractPageConfig:
    """Tests for extract_page_config."""

    def test_full_page(self):
        config = extract_page_config(make_configmap("rules", page_data()))

        assert config.slug == "rules"
        assert config.page.slug == "rules"
        assert config.page.title == "Rules"
        assert config.page.route == "rules"
        assert config.page.enabled is True
        assert config.page.content == "Be nice."

    def test_content_falls_back_to_blob(self):
        data = page_data(content="From blob")
        del data["content"]
        config = extract_page_config(make_configmap("rules", data))
        assert config.page.content == "From blob"

    def test_top_level_content_wins(self):
        config = extract_page_config(
            make_configmap("rules", page_data(content="From blob"))
        )
        assert config.page.content == "Be nice."

    def test_missing_slug(self):
        data = page_data()
        del data["slug"]
        with pytest.raises(MissingFieldError) as exc_info:
            extract_page_config(make_configmap("rules", data))
        assert exc_info.value.field == "slug"

    def test_invalid_page_json(self):
        data = page_data()
        data["page"] = "nope"
        with pytest.raises(DecodeError):
            extract_page_config(make_configmap("rules", data))
