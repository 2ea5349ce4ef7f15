from __future__ import annotations

import json
from pathlib import Path

import jsonschema
import pytest
import yaml
from jsonschema.exceptions import ValidationError

from otm_importer.config.loader import SCHEMA_PATH

"""Config schema contract: the shipped sample config and the JSON schema agree."""

PROJECT_ROOT = Path(__file__).resolve().parents[2]


@pytest.fixture(scope="module")
def schema() -> dict:
    return json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))


def test_sample_config_is_valid(schema):
    data = yaml.safe_load((PROJECT_ROOT / "config" / "import.yml").read_text(encoding="utf-8"))
    jsonschema.validate(data, schema)


def test_minimal_config_is_valid(schema):
    jsonschema.validate({"state_directory": "s", "upload_directory": "u"}, schema)


@pytest.mark.parametrize(
    "config",
    [
        {"upload_directory": "u"},
        {"state_directory": "s", "upload_directory": "u", "extra": 1},
        {"state_directory": "s", "upload_directory": "u", "limits": {"max_upload_bytes": 0}},
        {"state_directory": "s", "upload_directory": "u", "limits": {"unknown": 1}},
        {"state_directory": "s", "upload_directory": "u", "database": {"port": "5432"}},
        {"state_directory": "", "upload_directory": "u"},
    ],
)
def test_invalid_configs_are_rejected(schema, config):
    with pytest.raises(ValidationError):
        jsonschema.validate(config, schema)


def test_database_values_may_be_null(schema):
    jsonschema.validate(
        {"state_directory": "s", "upload_directory": "u", "database": {"password": None, "dsn": None}},
        schema,
    )
