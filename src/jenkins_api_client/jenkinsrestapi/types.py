"""Request and response types for the Jenkins REST API client.

Pydantic models for the immutable client configuration and the crumb
issued by the server, plus the payload variants accepted by ``post``.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, TypeAlias

from pydantic import BaseModel, ConfigDict, Field


class ClientConfig(BaseModel):
    """Connection settings for a Jenkins server. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    base_url: str
    username: str
    api_token: str
    timeout: float = 30.0


class Crumb(BaseModel):
    """CSRF protection token pair issued by ``/crumbIssuer/api/json``.

    The server names the header it expects (``crumbRequestField``,
    usually ``Jenkins-Crumb``) and the token value (``crumb``).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    field_name: str = Field(alias="crumbRequestField", min_length=1)
    token: str = Field(alias="crumb", min_length=1)

    def as_headers(self) -> dict[str, str]:
        """Return the crumb as a single-entry header mapping."""
        return {self.field_name: self.token}


@dataclass(frozen=True)
class FormPayload:
    """Plain form fields, sent URL-encoded."""

    fields: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class JsonEnvelopePayload:
    """Form payload carrying a JSON document in its ``json`` field.

    Jenkins form submissions (build with parameters, credential
    creation, ...) expect the structured part as a JSON string under
    ``json``, with the crumb repeated inside it.
    """

    json: Mapping[str, Any]
    fields: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RawPayload:
    """Opaque body such as a job ``config.xml``."""

    content: str | bytes = b""


Payload: TypeAlias = FormPayload | JsonEnvelopePayload | RawPayload


def coerce_form_payload(
    data: FormPayload | JsonEnvelopePayload | Mapping[str, Any] | None,
) -> FormPayload | JsonEnvelopePayload:
    """Turn a loose mapping into a typed form payload.

    A mapping whose ``json`` entry is itself a mapping becomes a
    :class:`JsonEnvelopePayload`; anything else is a :class:`FormPayload`.
    """
    if isinstance(data, FormPayload | JsonEnvelopePayload):
        return data
    if data is None:
        return FormPayload()

    inner = data.get("json")
    if isinstance(inner, Mapping):
        rest = {k: v for k, v in data.items() if k != "json"}
        return JsonEnvelopePayload(json=inner, fields=rest)
    return FormPayload(fields=dict(data))
