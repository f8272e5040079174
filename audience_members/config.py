"""
Audience library configuration.

Settings can come from defaults, environment variables (``AUDIENCE_*``)
or a YAML settings file:

```yaml
audience:
  refresh_batch_size: 10000
  refresh_concurrency: 8
  max_write_retries: 3
```
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from .exceptions import AudienceError


@dataclass
class AudienceConfig:
    """Tunables for the aggregator and the bulk refresher.

    Attributes:
        refresh_batch_size: Contacts refreshed per chunk in refresh_all
        refresh_concurrency: Contacts refreshed concurrently within a chunk
        max_write_retries: Read-merge-write attempts on a concurrent update
    """

    refresh_batch_size: int = 10_000
    refresh_concurrency: int = 4
    max_write_retries: int = 3

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise AudienceError(
                    f"Invalid config value for {f.name}: {value!r}",
                    {"field": f.name, "value": value},
                )

    @classmethod
    def from_env(cls) -> AudienceConfig:
        """Create config from environment variables."""
        overrides: dict[str, Any] = {}
        for f in fields(cls):
            raw = os.environ.get(f"AUDIENCE_{f.name.upper()}")
            if raw is not None:
                try:
                    overrides[f.name] = int(raw)
                except ValueError:
                    raise AudienceError(
                        f"Invalid config value for {f.name}: {raw!r}",
                        {"field": f.name, "value": raw},
                    ) from None
        return cls(**overrides)

    @classmethod
    def from_file(cls, path: str | Path) -> AudienceConfig:
        """Create config from the ``audience`` section of a YAML file.

        A missing file or section yields the defaults.
        """
        config_path = Path(path)
        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise AudienceError(
                f"Invalid config file {config_path}: expected a mapping",
                {"path": str(config_path), "value": data},
            )
        section = data.get("audience") or {}
        if not isinstance(section, dict):
            raise AudienceError(
                f"Invalid config section audience: {section!r}",
                {"field": "audience", "value": section},
            )
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in section.items() if k in known})
