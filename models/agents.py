"""Monitored agent definition."""
from dataclasses import dataclass


@dataclass
class Agent:
    id: str
    name: str
    url: str
    token: str = ""
    enabled: bool = True

    @classmethod
    def from_dict(cls, d):
        return cls(
            id=str(d["id"]),
            name=d.get("name") or str(d["id"]),
            url=d["url"],
            token=d.get("token") or "",
            enabled=bool(d.get("enabled", True)),
        )
