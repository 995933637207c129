"""
Pydantic models for quiz definitions, submissions and progress
"""
from quizplayer.models.quizzes import *
from quizplayer.models.submissions import *
from quizplayer.models.progress import *
