from launchpad.database.launch_db import LaunchDatabase

__all__ = ["LaunchDatabase"]
