# app/schemas/analysis.py
from enum import Enum
from typing import Any, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class IngredientOrigin(str, Enum):
    NATURAL = "Natural"
    SYNTHETIC = "Synthetic"
    BOTH = "Both"


_ORIGINS = {o.value.lower(): o for o in IngredientOrigin}


class CamelModel(BaseModel):
    # JSON 欄位一律 camelCase（scanId / eNumber / alternativeNames ...）
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class IngredientInfo(CamelModel):
    # 模型偶爾會漏 name；解析時先放寬，寫入統計時再過濾
    name: Optional[str] = None
    e_number: Optional[str] = None
    category: Optional[str] = None
    purpose: Optional[str] = None
    description: Optional[str] = None
    alternative_names: Optional[List[str]] = None
    origin: Optional[IngredientOrigin] = None
    safety_note: Optional[str] = None

    @field_validator("origin", mode="before")
    @classmethod
    def _normalize_origin(cls, v: Any) -> Optional[IngredientOrigin]:
        if v is None or isinstance(v, IngredientOrigin):
            return v
        return _ORIGINS.get(str(v).strip().lower())


class AnalysisResult(CamelModel):
    scan_id: str = Field(default_factory=lambda: str(uuid4()))
    ingredients: List[IngredientInfo] = Field(default_factory=list)
    summary: Optional[str] = None

    @field_validator("scan_id", mode="before")
    @classmethod
    def _fill_scan_id(cls, v: Any) -> str:
        if v is None or not str(v).strip():
            return str(uuid4())
        return str(v).strip()

    @field_validator("ingredients", mode="before")
    @classmethod
    def _null_ingredients(cls, v: Any) -> Any:
        return [] if v is None else v

    def ingredient_names(self) -> List[str]:
        """依原順序列出有名字的成分（None 過濾掉）。"""
        return [i.name for i in self.ingredients if i.name is not None]
