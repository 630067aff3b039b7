from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import tomllib
from typing import cast


_DEFAULT_AUTHORIZED_ASSOCIATIONS = ("COLLABORATOR", "CONTRIBUTOR")
_KNOWN_ASSOCIATIONS = frozenset(
    {
        "COLLABORATOR",
        "CONTRIBUTOR",
        "FIRST_TIMER",
        "FIRST_TIME_CONTRIBUTOR",
        "MANNEQUIN",
        "MEMBER",
        "NONE",
        "OWNER",
    }
)


@dataclass(frozen=True)
class RuntimeConfig:
    poll_interval_seconds: int = 30
    worker_count: int = 4
    merge_timeout_minutes: int = 60
    log_dir: Path | None = None


@dataclass(frozen=True)
class RepoConfig:
    repo_id: str
    owner: str
    name: str
    authorized_associations: frozenset[str] = frozenset(_DEFAULT_AUTHORIZED_ASSOCIATIONS)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def authorizes(self, author_association: str | None) -> bool:
        if author_association is None:
            return False
        return author_association.strip().upper() in self.authorized_associations


@dataclass(frozen=True)
class CircleCIConfig:
    token_env: str = "CIRCLE_TOKEN"
    api_base_url: str = "https://circleci.com/api/v1.1"
    vcs_type: str = "github"
    request_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class AppConfig:
    runtime: RuntimeConfig
    repos: tuple[RepoConfig, ...]
    circleci: CircleCIConfig

    def repo_for(self, full_name: str) -> RepoConfig | None:
        for repo in self.repos:
            if repo.full_name == full_name:
                return repo
        return None


class ConfigError(ValueError):
    pass


def load_config(path: Path) -> AppConfig:
    with path.open("rb") as fh:
        data = tomllib.load(fh)

    runtime_data = _optional_table(data, "runtime") or {}
    repo_data = _require_table(data, "repo")
    circleci_data = _optional_table(data, "circleci") or {}

    runtime = RuntimeConfig(
        poll_interval_seconds=_int_with_default(runtime_data, "poll_interval_seconds", 30),
        worker_count=_int_with_default(runtime_data, "worker_count", 4),
        merge_timeout_minutes=_int_with_default(runtime_data, "merge_timeout_minutes", 60),
        log_dir=_optional_path(runtime_data, "log_dir"),
    )
    if runtime.poll_interval_seconds < 5:
        raise ConfigError("runtime.poll_interval_seconds must be >= 5")
    if runtime.worker_count < 1:
        raise ConfigError("runtime.worker_count must be >= 1")
    if runtime.merge_timeout_minutes < 1:
        raise ConfigError("runtime.merge_timeout_minutes must be >= 1")

    circleci = CircleCIConfig(
        token_env=_str_with_default(circleci_data, "token_env", "CIRCLE_TOKEN"),
        api_base_url=_str_with_default(
            circleci_data, "api_base_url", "https://circleci.com/api/v1.1"
        ).rstrip("/"),
        vcs_type=_str_with_default(circleci_data, "vcs_type", "github"),
        request_timeout_seconds=_float_with_default(circleci_data, "request_timeout_seconds", 30.0),
    )
    if circleci.request_timeout_seconds <= 0:
        raise ConfigError("circleci.request_timeout_seconds must be > 0")

    return AppConfig(
        runtime=runtime,
        repos=_load_repo_configs(repo_data),
        circleci=circleci,
    )


def _load_repo_configs(repo_data: dict[str, object]) -> tuple[RepoConfig, ...]:
    if not repo_data:
        raise ConfigError("[repo] must define at least one [repo.<id>] table")

    repos: list[RepoConfig] = []
    for repo_id, raw_value in sorted(repo_data.items()):
        repo_table = _require_repo_table(raw_value, table_name=f"[repo.{repo_id}]")
        repos.append(
            RepoConfig(
                repo_id=repo_id,
                owner=_require_str(repo_table, "owner"),
                name=_str_with_default(repo_table, "name", repo_id),
                authorized_associations=_associations_with_default(
                    repo_table, "authorized_associations", _DEFAULT_AUTHORIZED_ASSOCIATIONS
                ),
            )
        )
    _ensure_unique_full_names(repos)
    return tuple(repos)


def _require_table(data: dict[str, object], key: str) -> dict[str, object]:
    value = data.get(key)
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] is required and must be a TOML table")
    if not all(isinstance(item, str) for item in value.keys()):
        raise ConfigError(f"[{key}] must have string keys")
    return cast(dict[str, object], value)


def _optional_table(data: dict[str, object], key: str) -> dict[str, object] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] must be a TOML table when provided")
    if not all(isinstance(item, str) for item in value.keys()):
        raise ConfigError(f"[{key}] must have string keys")
    return cast(dict[str, object], value)


def _require_repo_table(value: object, *, table_name: str) -> dict[str, object]:
    if not isinstance(value, dict):
        raise ConfigError(f"{table_name} must be a TOML table")
    if not all(isinstance(item, str) for item in value.keys()):
        raise ConfigError(f"{table_name} must have string keys")
    return cast(dict[str, object], value)


def _require_str(data: dict[str, object], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} is required and must be a non-empty string")
    return value


def _str_with_default(data: dict[str, object], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string")
    return value


def _int_with_default(data: dict[str, object], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer")
    return value


def _float_with_default(data: dict[str, object], key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ConfigError(f"{key} must be a number")
    return float(value)


def _optional_path(data: dict[str, object], key: str) -> Path | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string if provided")
    return Path(value).expanduser()


def _associations_with_default(
    data: dict[str, object], key: str, default: tuple[str, ...]
) -> frozenset[str]:
    value = data.get(key, list(default))
    if not isinstance(value, list) or not value:
        raise ConfigError(f"{key} must be a non-empty list of strings")
    out: set[str] = set()
    for item in value:
        if not isinstance(item, str):
            raise ConfigError(f"{key} must be a non-empty list of strings")
        normalized = item.strip().upper()
        if normalized not in _KNOWN_ASSOCIATIONS:
            available = ", ".join(sorted(_KNOWN_ASSOCIATIONS))
            raise ConfigError(
                f"Unknown author association {item!r} in {key}; expected one of: {available}"
            )
        out.add(normalized)
    return frozenset(out)


def _ensure_unique_full_names(repos: list[RepoConfig]) -> None:
    seen: dict[str, str] = {}
    for repo in repos:
        existing_id = seen.get(repo.full_name)
        if existing_id is not None:
            raise ConfigError(
                f"Duplicate repo full_name {repo.full_name!r} across repo ids "
                f"{existing_id!r} and {repo.repo_id!r}"
            )
        seen[repo.full_name] = repo.repo_id
