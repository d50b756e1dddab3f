from gcedirector.api.model import InstanceState, InstanceStatus, from_gce_status, from_sql_state

__all__ = ["InstanceState", "InstanceStatus", "from_gce_status", "from_sql_state"]
