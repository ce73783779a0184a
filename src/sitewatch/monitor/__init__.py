"""Website uptime monitoring.

See :class:`SiteMonitor` for single check rounds and :class:`MonitorLoop`
for periodic background checks.
"""

from sitewatch.monitor.checker import MonitorLoop, SiteMonitor

__all__ = ["MonitorLoop", "SiteMonitor"]
