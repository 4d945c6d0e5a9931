from fastapi import Depends
from sqlalchemy.orm import Session

from neo_edu.core.cache import RedisCache, get_cache
from neo_edu.core.config import Settings, get_settings
from neo_edu.core.database import get_db
from neo_edu.services.authoring import ExamAuthoringService
from neo_edu.services.exam_engine import EngineConfig, ExamEngine


def get_engine_config(settings: Settings = Depends(get_settings)) -> EngineConfig:
    return EngineConfig.from_settings(settings)


def get_exam_engine(db: Session = Depends(get_db), config: EngineConfig = Depends(get_engine_config)) -> ExamEngine:
    return ExamEngine(db, config)


def get_authoring(db: Session = Depends(get_db), cache: RedisCache = Depends(get_cache)) -> ExamAuthoringService:
    return ExamAuthoringService(db, cache)
