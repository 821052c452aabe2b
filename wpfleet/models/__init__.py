from wpfleet.models.site import Site
from wpfleet.models.inventory import Plugin, Theme
from wpfleet.models.update_log import UpdateLog

__all__ = ["Site", "Plugin", "Theme", "UpdateLog"]
