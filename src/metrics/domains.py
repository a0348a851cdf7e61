"""Team→domain and engineer→team lookups from configured mappings."""

from typing import Optional

from src.config import MappingSettings


class DomainMap:
    def __init__(self, team_domains: dict[str, str], engineer_teams: dict[str, str]):
        self._team_domains = {k.upper(): v for k, v in team_domains.items()}
        self._engineer_teams = {k.lower(): v for k, v in engineer_teams.items()}

    @classmethod
    def from_settings(cls, settings: MappingSettings) -> "DomainMap":
        return cls(settings.team_domains, settings.engineer_teams)

    @property
    def has_domains(self) -> bool:
        return bool(self._team_domains)

    @property
    def has_engineer_mapping(self) -> bool:
        return bool(self._engineer_teams)

    def domain_for_team(self, team_key: str) -> Optional[str]:
        return self._team_domains.get(team_key.upper())

    def teams_for_domain(self, domain: str) -> list[str]:
        return sorted(k for k, d in self._team_domains.items() if d == domain)

    def all_domains(self) -> list[str]:
        return sorted(set(self._team_domains.values()))

    def allowed_engineers(self) -> Optional[set[str]]:
        """Lowercased engineer names, or None when no mapping is configured."""
        return set(self._engineer_teams) or None

    def is_engineer(self, name: Optional[str]) -> bool:
        if not name:
            return False
        allowed = self.allowed_engineers()
        return allowed is None or name.lower() in allowed

    def team_for_engineer(self, name: str) -> Optional[str]:
        return self._engineer_teams.get(name.lower())

    def engineers_for_teams(self, team_keys: list[str]) -> set[str]:
        wanted = {k.upper() for k in team_keys}
        return {name for name, team in self._engineer_teams.items() if team.upper() in wanted}


def in_teams(team_keys: Optional[list[str]], wanted: Optional[list[str]]) -> bool:
    """True if any of `team_keys` is in `wanted` (case-insensitive); None means everything."""
    if wanted is None:
        return True
    wanted_upper = {k.upper() for k in wanted}
    return any(k.upper() in wanted_upper for k in team_keys or [])
