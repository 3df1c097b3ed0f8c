"""SQLAlchemy ORM models."""

# Import all models so Base.metadata registers them for create_all().
from vigil_server.models.config_var import DeviceConfigVariable as DeviceConfigVariable
from vigil_server.models.config_var import GroupConfigVariable as GroupConfigVariable
from vigil_server.models.device import Device as Device
from vigil_server.models.device import DeviceApiKey as DeviceApiKey
from vigil_server.models.device import DeviceGroup as DeviceGroup
