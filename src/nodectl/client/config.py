"""Client configuration file — load, resolve, merge and save.

The file is YAML::

    context: prod
    contexts:
      prod:
        endpoints: [10.0.0.2, 10.0.0.3]
        nodes: [10.0.0.2]
        ca: <base64 PEM>
        crt: <base64 PEM>
        key: <base64 PEM>
        auth:
          basic: {username: admin, password: secret}
          siderov1: {identity: alice@example.com}

The active context is chosen by an explicit override first, then by the
top-level ``context`` key.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from nodectl.core.errors import ConfigError

log = logging.getLogger(__name__)

CONFIG_ENV_VAR = "NODECTL_CONFIG"
KEYS_DIR_ENV_VAR = "NODECTL_KEYS_DIR"

_DEFAULT_DIR = Path("~/.nodectl")


def default_path() -> Path:
    """``$NODECTL_CONFIG`` if set, otherwise ``~/.nodectl/config``."""
    env = os.environ.get(CONFIG_ENV_VAR)
    if env:
        return Path(env).expanduser()
    return (_DEFAULT_DIR / "config").expanduser()


def default_keys_dir() -> Path:
    """Directory holding signature keys (``$NODECTL_KEYS_DIR`` or ``~/.nodectl/keys``)."""
    env = os.environ.get(KEYS_DIR_ENV_VAR)
    if env:
        return Path(env).expanduser()
    return (_DEFAULT_DIR / "keys").expanduser()


class BasicAuth(BaseModel):
    username: str = ""
    password: str = ""


class SignatureAuth(BaseModel):
    identity: str = ""


class AuthConfig(BaseModel):
    basic: BasicAuth | None = None
    siderov1: SignatureAuth | None = None


class Context(BaseModel):
    """A named bundle of endpoints, default nodes and credentials."""

    endpoints: list[str] = Field(default_factory=list)
    nodes: list[str] = Field(default_factory=list)
    cluster: str = ""
    ca: str = ""
    crt: str = ""
    key: str = ""
    auth: AuthConfig | None = None

    @property
    def basic_auth(self) -> BasicAuth | None:
        if self.auth is None or self.auth.basic is None:
            return None
        return self.auth.basic

    @property
    def signature_identity(self) -> str:
        if self.auth is None or self.auth.siderov1 is None:
            return ""
        return self.auth.siderov1.identity


@dataclass(frozen=True)
class Rename:
    """A context renamed while merging configs."""

    old: str
    new: str

    def __str__(self) -> str:
        return f"{self.old} -> {self.new}"


class Config(BaseModel):
    """Parsed client configuration."""

    context: str = ""
    contexts: dict[str, Context] = Field(default_factory=dict)

    # -- loading -------------------------------------------------------------

    @classmethod
    def from_bytes(cls, data: bytes | str) -> Config:
        try:
            raw = yaml.safe_load(data)
        except yaml.YAMLError as exc:
            raise ConfigError(f"failed to decode client config: {exc}") from exc

        if raw is None:
            return cls()
        if not isinstance(raw, dict):
            raise ConfigError("failed to decode client config: top level must be a mapping")

        # YAML renders an empty context as `name:` which loads as None
        contexts = raw.get("contexts") or {}
        if isinstance(contexts, dict):
            raw["contexts"] = {k: (v or {}) for k, v in contexts.items()}
        if raw.get("context") is None:
            raw["context"] = ""

        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            raise ConfigError(f"failed to decode client config: {exc}") from exc

    @classmethod
    def open(cls, path: str | Path = "") -> Config:
        """Load the config at *path* (the default path when empty).

        A missing file yields an empty config so that ``config add`` can
        bootstrap a new one.
        """
        p = Path(path).expanduser() if str(path) else default_path()
        try:
            data = p.read_bytes()
        except FileNotFoundError:
            log.debug("Client config %s does not exist, starting empty", p)
            return cls()
        except OSError as exc:
            raise ConfigError(f"failed to read client config {p}: {exc}") from exc
        return cls.from_bytes(data)

    # -- context resolution --------------------------------------------------

    def resolve_context(self, override: str = "") -> Context:
        """Return the active context (*override* wins over ``context``)."""
        if override:
            try:
                return self.contexts[override]
            except KeyError:
                raise ConfigError(f"context {override!r} not found in config") from None

        if self.context in self.contexts:
            return self.contexts[self.context]

        if not self.context and not self.contexts:
            raise ConfigError("client config file is empty")
        raise ConfigError(f"default context {self.context!r} not found in config")

    # -- mutation ------------------------------------------------------------

    def merge(self, other: Config) -> list[Rename]:
        """Merge *other*'s contexts into this config.

        Contexts whose name already exists with different contents are
        renamed ``name-1``, ``name-2``, ...  Identical duplicates are
        skipped.  If this config has no current context, *other*'s current
        context (after renaming) becomes current.
        """
        renames: list[Rename] = []
        mapped: dict[str, str] = {}

        for name, ctx in other.contexts.items():
            target = name
            if name in self.contexts:
                if self.contexts[name] == ctx:
                    mapped[name] = name
                    continue
                i = 1
                while f"{name}-{i}" in self.contexts:
                    i += 1
                target = f"{name}-{i}"
                renames.append(Rename(name, target))
            self.contexts[target] = ctx.model_copy(deep=True)
            mapped[name] = target

        if not self.context and other.context:
            self.context = mapped.get(other.context, other.context)

        return renames

    # -- persistence ---------------------------------------------------------

    def save(self, path: str | Path = "") -> Path:
        """Atomically write the config to *path* (the default path when empty)."""
        p = Path(path).expanduser() if str(path) else default_path()
        p.parent.mkdir(parents=True, exist_ok=True)

        data: dict[str, Any] = {"context": self.context, "contexts": {}}
        for name, ctx in self.contexts.items():
            data["contexts"][name] = ctx.model_dump(exclude_defaults=True)

        fd, tmp = tempfile.mkstemp(prefix=f".{p.name}.", dir=p.parent)
        try:
            with os.fdopen(fd, "w") as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
            os.chmod(tmp, 0o600)
            os.replace(tmp, p)
        except BaseException:
            try:
                os.unlink(tmp)
            except FileNotFoundError:
                pass
            raise
        log.info("Saved client config to %s", p)
        return p
