from qrydex.workers.dispatcher import Dispatcher, DrainReport
from qrydex.workers.maintenance import MaintenanceReport, MaintenanceScheduler
from qrydex.workers.seed import seed_default_jobs

__all__ = [
    "Dispatcher",
    "DrainReport",
    "MaintenanceReport",
    "MaintenanceScheduler",
    "seed_default_jobs",
]
