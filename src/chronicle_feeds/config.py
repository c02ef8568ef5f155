from __future__ import annotations

import configparser
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_USER_AGENT = "chronicle-feeds/0.1"


def _parse_ini(path: Path) -> dict[str, str]:
    if not path.exists():
        return {}

    parser = configparser.ConfigParser()
    parser.optionxform = str
    parser.read(path, encoding="utf-8")

    values: dict[str, str] = {}
    for key, value in parser.defaults().items():
        values[key.upper()] = value
    for section in parser.sections():
        for key, value in parser.items(section):
            values[key.upper()] = value
    return values


def _parse_dotenv(path: Path) -> dict[str, str]:
    if not path.exists():
        return {}

    values: dict[str, str] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if (
            len(value) >= 2
            and value[0] == value[-1]
            and value[0] in {"'", '"'}
        ):
            value = value[1:-1]

        if key:
            values[key.upper()] = value
    return values


def _pick(
    values: Mapping[str, str],
    key: str,
    default: Optional[str] = None,
) -> Optional[str]:
    value = values.get(key)
    if value is None:
        return default
    return str(value)


def _optional_int(value: Optional[str]) -> Optional[int]:
    raw = (value or "").strip()
    if not raw:
        return None
    return int(raw)


@dataclass
class Settings:
    state_db_path: Path
    sources_file: Optional[Path]
    max_state_items: int
    snapshot_max_items: int
    storage_max_bytes: Optional[int]

    request_timeout_sec: float
    request_user_agent: str
    feed_proxy_url: Optional[str]
    max_concurrent_fetches: int

    sort_order: str
    run_interval_sec: int

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, str]) -> "Settings":
        values = {key.upper(): str(value) for key, value in mapping.items() if value is not None}

        sources_file_raw = (_pick(values, "SOURCES_FILE") or "").strip()
        sort_order = (_pick(values, "SORT_ORDER", "desc") or "desc").strip().lower()
        if sort_order not in {"desc", "asc"}:
            raise ValueError(f"SORT_ORDER must be 'desc' or 'asc', got '{sort_order}'")

        return cls(
            state_db_path=Path(
                _pick(values, "STATE_DB_PATH", "./data/chronicle.db") or "./data/chronicle.db"
            ).expanduser(),
            sources_file=Path(sources_file_raw).expanduser() if sources_file_raw else None,
            max_state_items=int(_pick(values, "MAX_STATE_ITEMS", "1000") or "1000"),
            snapshot_max_items=int(_pick(values, "SNAPSHOT_MAX_ITEMS", "500") or "500"),
            storage_max_bytes=_optional_int(_pick(values, "STORAGE_MAX_BYTES")),
            request_timeout_sec=float(_pick(values, "REQUEST_TIMEOUT_SEC", "12") or "12"),
            request_user_agent=(_pick(values, "REQUEST_USER_AGENT") or "").strip() or DEFAULT_USER_AGENT,
            feed_proxy_url=(_pick(values, "FEED_PROXY_URL") or "").strip() or None,
            max_concurrent_fetches=int(_pick(values, "MAX_CONCURRENT_FETCHES", "0") or "0"),
            sort_order=sort_order,
            run_interval_sec=int(_pick(values, "RUN_INTERVAL_SEC", "900") or "900"),
        )

    @classmethod
    def from_files(
        cls,
        *,
        config_file: Path | str = "config.ini",
        env_file: Path | str = ".env",
        base_env: Optional[Mapping[str, str]] = None,
    ) -> "Settings":
        merged_values: dict[str, str] = {}
        merged_values.update(_parse_ini(Path(config_file)))
        merged_values.update(_parse_dotenv(Path(env_file)))
        if base_env is None:
            base_env = os.environ
        for key, value in base_env.items():
            if value is not None:
                merged_values[key.upper()] = str(value)
        return cls.from_mapping(merged_values)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls.from_mapping(os.environ)

    def ensure_dirs(self) -> None:
        self.state_db_path.parent.mkdir(parents=True, exist_ok=True)
