"""Localized diagnostic messages.

Tables are built once at import and never mutated. Callers pick one with
``load_messages`` and hand it to whoever formats messages.
"""
from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

DEFAULT_CULTURE = "en-US"

_EN_US = {
    "reading_option": "Reading configuration option '{option}' on instance '{server}\\{instance}'.",
    "option_value": "Configuration option '{option}' currently has the value {value}.",
    "option_not_found": "Configuration option '{option}' was not found on the instance.",
    "duplicate_option": "Found {count} configuration options named '{option}'; using the first one. The instance metadata looks inconsistent.",
    "not_active_node": "This node is not the active node for instance '{server}\\{instance}'; evaluation is skipped.",
    "in_desired_state": "Configuration option '{option}' is in the desired state ({value}).",
    "not_in_desired_state": "Configuration option '{option}' has the value {actual} but {expected} is expected.",
    "setting_option": "Setting configuration option '{option}' to {value} on instance '{server}\\{instance}'.",
    "option_updated": "Configuration option '{option}' has been updated to {value}.",
    "option_unchanged": "Configuration option '{option}' already had the value {value}; it was committed again.",
    "no_restart_needed": "Configuration option '{option}' is dynamic; no restart is needed.",
    "restarting": "Restarting instance '{server}\\{instance}' (timeout {timeout}s) so that '{option}' takes effect.",
    "restarted": "Instance '{server}\\{instance}' has been restarted.",
    "restart_required": (
        "A restart of instance '{server}\\{instance}' is required for configuration option '{option}' "
        "with value {value} to take effect. Restart the instance manually or set restart_service."
    ),
    "operation_failed": "{operation} of '{option}' failed: {error}",
}

_SV_SE = {
    "reading_option": "Läser konfigurationsalternativet '{option}' på instansen '{server}\\{instance}'.",
    "option_value": "Konfigurationsalternativet '{option}' har för närvarande värdet {value}.",
    "option_not_found": "Konfigurationsalternativet '{option}' hittades inte på instansen.",
    "duplicate_option": "Hittade {count} konfigurationsalternativ med namnet '{option}'; använder det första.",
    "not_active_node": "Den här noden är inte aktiv nod för instansen '{server}\\{instance}'; utvärderingen hoppas över.",
    "in_desired_state": "Konfigurationsalternativet '{option}' är i önskat tillstånd ({value}).",
    "not_in_desired_state": "Konfigurationsalternativet '{option}' har värdet {actual} men {expected} förväntas.",
    "setting_option": "Sätter konfigurationsalternativet '{option}' till {value} på instansen '{server}\\{instance}'.",
    "option_updated": "Konfigurationsalternativet '{option}' har uppdaterats till {value}.",
    "option_unchanged": "Konfigurationsalternativet '{option}' hade redan värdet {value}; det sparades igen.",
    "no_restart_needed": "Konfigurationsalternativet '{option}' är dynamiskt; ingen omstart behövs.",
    "restarting": "Startar om instansen '{server}\\{instance}' (tidsgräns {timeout}s) så att '{option}' börjar gälla.",
    "restarted": "Instansen '{server}\\{instance}' har startats om.",
    "restart_required": (
        "Instansen '{server}\\{instance}' måste startas om för att konfigurationsalternativet '{option}' "
        "med värdet {value} ska börja gälla."
    ),
    "operation_failed": "{operation} av '{option}' misslyckades: {error}",
}

MESSAGE_TABLES: Mapping[str, Mapping[str, str]] = MappingProxyType(
    {
        "en-US": MappingProxyType(dict(_EN_US)),
        # Keys missing from a translation fall back to en-US.
        "sv-SE": MappingProxyType({**_EN_US, **_SV_SE}),
    }
)


def load_messages(culture: str | None = None) -> Mapping[str, str]:
    """Return the message table for ``culture`` (falls back to en-US).

    Matching is case-insensitive and a bare language ("sv") picks the first
    table for that language.
    """
    if not culture:
        return MESSAGE_TABLES[DEFAULT_CULTURE]
    wanted = culture.strip().replace("_", "-").lower()
    for name, table in MESSAGE_TABLES.items():
        if name.lower() == wanted:
            return table
    lang = wanted.split("-", 1)[0]
    for name, table in MESSAGE_TABLES.items():
        if name.lower().split("-", 1)[0] == lang:
            return table
    return MESSAGE_TABLES[DEFAULT_CULTURE]
