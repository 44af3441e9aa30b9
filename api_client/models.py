"""Internal data models for api-client.

All models use Pydantic v2. Configuration and request descriptors are frozen
once built; responses belong to the caller.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]

HTTP_METHODS: tuple[str, ...] = ("GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD")

DEFAULT_HEADERS: dict[str, str] = {"accept": "application/json"}


def _is_blank(value: Any) -> bool:
    """None, False, empty string and numeric zero. Empty lists and dicts count as given."""
    if value is None or value is False or value == "":
        return True
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value == 0


def _stringify_headers(value: Any) -> Any:
    """Lower-case header names and render values as strings."""
    if not isinstance(value, dict):
        return value
    return {str(k).lower(): str(v) for k, v in value.items() if v is not None}


# =============================================================================
# Authentication Variants
# =============================================================================


class BearerAuth(BaseModel):
    """`authorization: Bearer <token>`."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["bearer"] = "bearer"
    token: str

    def header(self) -> str | None:
        return f"Bearer {self.token}"


class BasicAuth(BaseModel):
    """`authorization: Basic <credentials>` with pre-encoded credentials."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["basic"] = "basic"
    credentials: str

    def header(self) -> str | None:
        return f"Basic {self.credentials}"


class CredentialsAuth(BaseModel):
    """Username/password pair handed to the transport."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["credentials"] = "credentials"
    user: str
    password: str

    def header(self) -> str | None:
        # The transport computes the header from the pair
        return None


AuthMode = Annotated[
    Union[BearerAuth, BasicAuth, CredentialsAuth],
    Field(discriminator="kind"),
]


def resolve_auth(
    token: str | None = None,
    basic: str | None = None,
    user: str | None = None,
    password: str | None = None,
) -> BearerAuth | BasicAuth | CredentialsAuth | None:
    """Pick the single active auth mode. Priority: token > basic > user+password.

    Empty strings count as absent. A user without a password (or the reverse)
    selects nothing.
    """
    if token:
        return BearerAuth(token=token)
    if basic:
        return BasicAuth(credentials=basic)
    if user and password:
        return CredentialsAuth(user=user, password=password)
    return None


# =============================================================================
# Body Variants
# =============================================================================


class JsonBody(BaseModel):
    """Any JSON-serializable value, sent as `application/json`."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["json"] = "json"
    value: Any


class FormBody(BaseModel):
    """Form fields, sent as `application/x-www-form-urlencoded`."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["form"] = "form"
    fields: dict[str, Any]


class TextBody(BaseModel):
    """Raw text, sent as `text/plain`."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["text"] = "text"
    text: str


BodyVariant = Annotated[
    Union[JsonBody, FormBody, TextBody],
    Field(discriminator="kind"),
]


# =============================================================================
# Client Configuration Models
# =============================================================================


class ClientOptions(BaseModel):
    """Configuration bag accepted by create_client.

    Keys may be given in snake_case or in the camelCase spelling used by
    option files shared with other HTTP tooling (rejectUnauthorized,
    keepAliveMsecs, maxSockets, recordRedirects).
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    headers: dict[str, str] = Field(
        default_factory=dict, description="Headers merged over accept: application/json"
    )
    timeout: float | None = Field(default=None, description="Request timeout in milliseconds")
    token: str | None = Field(default=None, description="Bearer token")
    basic: str | None = Field(default=None, description="Pre-encoded basic credentials")
    user: str | None = Field(default=None, description="Username for transport-level auth")
    password: str | None = Field(default=None, description="Password for transport-level auth")
    reject_unauthorized: bool | None = Field(
        default=None, alias="rejectUnauthorized", description="Verify server certificates"
    )
    ca: str | None = Field(default=None, description="CA bundle as PEM text or file path")
    keep_alive_msecs: float | None = Field(
        default=None, alias="keepAliveMsecs", description="Enables a keep-alive pool"
    )
    max_sockets: int | None = Field(
        default=None, alias="maxSockets", description="Pool size (default 1)"
    )
    record_redirects: bool = Field(
        default=False, alias="recordRedirects", description="Derive redirection from location"
    )

    @field_validator("headers", mode="before")
    @classmethod
    def normalize_headers(cls, v: Any) -> Any:
        return _stringify_headers(v)


class Endpoint(BaseModel):
    """The scheme, host, port and base path a client is bound to."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    scheme: Literal["http", "https"]
    host: str
    port: int | None = None
    base_path: str = Field(default="/", description="Never ends with '/' unless it is '/'")

    @property
    def origin(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        if self.port is not None:
            return f"{self.scheme}://{host}:{self.port}"
        return f"{self.scheme}://{host}"

    @property
    def url(self) -> str:
        return self.origin + self.base_path


class TlsOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    reject_unauthorized: bool | None = None
    ca: str | None = None


class PoolPolicy(BaseModel):
    """Keep-alive pool settings."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    keep_alive_msecs: float = Field(gt=0)
    max_sockets: int = Field(default=1, ge=1)


class ClientConfig(BaseModel):
    """Immutable client configuration resolved once at construction."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    endpoint: Endpoint
    default_headers: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_HEADERS))
    auth: AuthMode | None = None
    tls: TlsOptions = Field(default_factory=TlsOptions)
    pool: PoolPolicy | None = None
    timeout_ms: float | None = None
    record_redirects: bool = False


# =============================================================================
# Per-Request Models
# =============================================================================


class RequestOptions(BaseModel):
    """Per-call options.

    The body and auth are tagged variants with at most one active case. The
    flat shorthands json/form/text and token/basic/user+password are
    collapsed into them on construction: json wins over form, form over
    text; token wins over basic, basic over user+password. A blank
    shorthand (None, False, "" or 0) counts as not given.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    query: dict[str, Any] = Field(default_factory=dict, description="URL query parameters")
    headers: dict[str, str] = Field(default_factory=dict, description="Per-call header overrides")
    body: BodyVariant | None = Field(default=None, description="Request body")
    auth: AuthMode | None = Field(default=None, description="Per-call auth override")

    @field_validator("headers", mode="before")
    @classmethod
    def normalize_headers(cls, v: Any) -> Any:
        return _stringify_headers(v)

    @model_validator(mode="before")
    @classmethod
    def collapse_shorthands(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)

        supplied = [
            (kind, data.pop(kind)) for kind in ("json", "form", "text") if kind in data
        ]
        supplied = [(kind, value) for kind, value in supplied if not _is_blank(value)]
        if supplied:
            if data.get("body") is not None:
                raise ValueError("body cannot be combined with json, form or text")
            if len(supplied) > 1:
                logger.warning(
                    "Multiple request bodies supplied (%s); using %s",
                    ", ".join(kind for kind, _ in supplied),
                    supplied[0][0],
                )
            kind, value = supplied[0]
            if kind == "json":
                data["body"] = JsonBody(value=value)
            elif kind == "form":
                data["body"] = FormBody(fields=value)
            else:
                data["body"] = TextBody(text=value)

        shorthand = {key: data.pop(key) for key in ("token", "basic", "user", "password") if key in data}
        if shorthand:
            auth = resolve_auth(**shorthand)
            if auth is not None:
                if data.get("auth") is not None:
                    raise ValueError("auth cannot be combined with token, basic or user/password")
                data["auth"] = auth

        return data


class RequestDescriptor(BaseModel):
    """Fully resolved, transport-ready representation of one call."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    method: HttpMethod
    url: str = Field(description="Absolute URL including the encoded query string")
    path: str = Field(description="Call path as supplied by the caller")
    headers: dict[str, str] = Field(default_factory=dict)
    credentials: tuple[str, str] | None = Field(
        default=None, description="Transport-level user/password pair"
    )
    body: str = Field(default="", description="Encoded body text, empty when there is none")


class Response(BaseModel):
    """One HTTP response, shaped for the caller."""

    model_config = ConfigDict(extra="forbid")

    code: int = Field(description="HTTP status code")
    message: str = Field(default="", description="Status reason phrase")
    headers: dict[str, str] = Field(
        default_factory=dict, description="Response headers (lowercase keys)"
    )
    body: Any = Field(default_factory=dict, description="Parsed JSON or raw text")
    redirection: str | None = Field(
        default=None, description="Base URL derived from the location header"
    )
