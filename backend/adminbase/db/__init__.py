"""
Database package
"""
from adminbase.db.base import metadata
from adminbase.db.database import Database
from adminbase.db.query import QueryPlan
from adminbase.db.record import Record
from adminbase.db.session import engine, get_db
from adminbase.db.models import *

__all__ = [
    "metadata",
    "Database",
    "QueryPlan",
    "Record",
    "engine",
    "get_db",
]
