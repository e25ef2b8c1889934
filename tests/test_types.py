"""Tests for the configuration, crumb and payload types."""

import pydantic
import pytest

from jenkins_api_client.jenkinsrestapi import types


def test_crumb_parses_server_field_names():
    """The crumb issuer's camelCase fields map onto the model."""
    crumb = types.Crumb.model_validate(
        {
            "_class": "hudson.security.csrf.DefaultCrumbIssuer",
            "crumb": "abc123",
            "crumbRequestField": "Jenkins-Crumb",
        },
    )
    assert crumb.field_name == "Jenkins-Crumb"
    assert crumb.token == "abc123"
    assert crumb.as_headers() == {"Jenkins-Crumb": "abc123"}


def test_crumb_rejects_empty_values():
    """An empty field name or token is not a usable crumb."""
    with pytest.raises(pydantic.ValidationError):
        types.Crumb.model_validate({"crumbRequestField": "", "crumb": "abc"})
    with pytest.raises(pydantic.ValidationError):
        types.Crumb.model_validate({"crumbRequestField": "Jenkins-Crumb", "crumb": ""})


def test_crumb_is_immutable():
    """Crumbs are replaced, never edited."""
    crumb = types.Crumb(field_name="Jenkins-Crumb", token="abc")
    with pytest.raises(pydantic.ValidationError):
        crumb.token = "other"


def test_client_config_is_immutable():
    """ClientConfig cannot be changed after construction."""
    config = types.ClientConfig(base_url="http://ci", username="alice", api_token="t")
    with pytest.raises(pydantic.ValidationError):
        config.username = "bob"
    assert config.timeout == 30.0


# ---------------------------------------------------------------------------
# coerce_form_payload
# ---------------------------------------------------------------------------


def test_coerce_none_is_empty_form():
    assert types.coerce_form_payload(None) == types.FormPayload()


def test_coerce_plain_mapping_is_form():
    payload = types.coerce_form_payload({"Submit": "Yes"})
    assert payload == types.FormPayload(fields={"Submit": "Yes"})


def test_coerce_mapping_with_json_document_is_envelope():
    """A nested json mapping is split from the remaining form fields."""
    payload = types.coerce_form_payload({"json": {"parameter": []}, "Submit": "Build"})
    assert isinstance(payload, types.JsonEnvelopePayload)
    assert payload.json == {"parameter": []}
    assert payload.fields == {"Submit": "Build"}


def test_coerce_string_json_field_stays_form():
    """An already-serialized json field is sent as an ordinary form field."""
    payload = types.coerce_form_payload({"json": '{"parameter": []}'})
    assert payload == types.FormPayload(fields={"json": '{"parameter": []}'})


def test_coerce_typed_payload_passes_through():
    envelope = types.JsonEnvelopePayload(json={"a": 1})
    assert types.coerce_form_payload(envelope) is envelope
