"""
Pydantic schemas for import input and progress reporting.

This module contains the shape of the JSON input document and of the
status updates published to progress sinks.
"""

from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class ImportDataset(BaseModel):
    """
    JSON input document.

    All three sections are required; each is an ordered list of
    loosely-typed objects whose keys are matched like spreadsheet headers.
    """

    stores: List[Dict[str, Any]] = Field(..., description="Store roster rows")
    employees: List[Dict[str, Any]] = Field(..., description="Employee/contact rows")
    schedules: List[Dict[str, Any]] = Field(..., description="Shift schedule rows")

    class Config:
        json_schema_extra = {
            "example": {
                "stores": [{"store_number": 1001, "store_name": "Main St"}],
                "employees": [{"name": "Jane Doe", "phone": "+15550001"}],
                "schedules": [{
                    "store_number": 1001,
                    "date": "2023-01-02",
                    "employee_name": "Jane Doe",
                    "employee_id": "1",
                    "shift_time": "9:00am - 5:00pm"
                }]
            }
        }


class ProgressStatusEnum(str, Enum):
    """Status values accepted by progress sinks."""
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    FAILED = 'failed'


class ImportStatusUpdate(BaseModel):
    """A status update for the progress record of one import."""

    status: ProgressStatusEnum = Field(..., description="Current status")
    progress: int = Field(..., ge=0, le=100, description="Progress percentage")
    message: str = Field(..., description="Human-readable progress message")
    phase: Optional[str] = Field(None, description="Orchestrator phase")
    metadata: Optional[Dict[str, Any]] = Field(
        None, description="Per-sheet/per-phase counts (on completion)"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "status": "processing",
                "progress": 45,
                "message": "Loading contacts...",
                "phase": "loading_contacts"
            }
        }
