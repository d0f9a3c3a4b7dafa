"""Missions module - Mission and Definition-of-Done models plus the mission file parser."""

from .models import DoDCriterion, DoDPriority, Mission, MissionProgress
from .parser import MissionParser

__all__ = [
	"DoDCriterion",
	"DoDPriority",
	"Mission",
	"MissionProgress",
	"MissionParser",
]
