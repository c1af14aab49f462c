"""Run settings: defaults, named profiles and optional JSON config files."""
from __future__ import annotations

import dataclasses
import ipaddress
import json
import typing as t
from pathlib import Path

from . import address
from .errors import SourceError


@dataclasses.dataclass
class Settings:
    local_net: str = "10.0.0.0"
    prefix_len: int = 8
    max_flows: int = 1_000_000
    progress_interval: int = 12_501
    show_packet_counts: bool = True
    show_role_numbers: bool = False

    @property
    def is_ipv4(self) -> bool:
        return isinstance(ipaddress.ip_address(self.local_net), ipaddress.IPv4Address)

    @property
    def local_net_bytes(self) -> bytes:
        return address.to_bytes16(self.local_net)

    @property
    def netmask(self) -> bytes:
        return address.netmask(self.prefix_len, ipv4=self.is_ipv4)


# simple, deterministic presets; explicit settings always win
PROFILES: dict[str, dict[str, t.Any]] = {
    "default": {},
    "large": {"max_flows": 20_000_000, "progress_interval": 200_001},
    "debug": {"show_role_numbers": True, "progress_interval": 1_000},
}


def load_settings(path: t.Optional[str] = None, profile: str = "default", **overrides) -> Settings:
    """Build Settings from defaults, a profile, a JSON file and overrides, in that order."""
    if profile not in PROFILES:
        raise ValueError(f"unknown profile {profile!r}")
    values: dict[str, t.Any] = dict(PROFILES[profile])

    if path:
        p = Path(path)
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise SourceError("config file not found", path) from None
        except json.JSONDecodeError as e:
            raise ValueError(f"invalid JSON in config file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"config file {path} must contain a JSON object")
        values.update(data)

    values.update({k: v for k, v in overrides.items() if v is not None})

    known = {f.name for f in dataclasses.fields(Settings)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ValueError(f"unknown settings: {', '.join(unknown)}")
    settings = Settings(**values)
    # bad addresses or prefixes raise ValueError here rather than mid-import
    settings.netmask
    return settings
