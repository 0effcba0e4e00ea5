"""
Database Package
================

Exports key database components.
"""

from riskpulse.db.models import Base, WorkspaceStateModel, SessionOutcomeModel
from riskpulse.db.connection import init_db, get_session_maker, close_db, database_path
