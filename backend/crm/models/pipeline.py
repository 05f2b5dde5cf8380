"""
Pipeline Stage Models

Stages are user-defined and ordered. Their names drive won/lost
classification, so there is no separate "type" field.
"""

from pydantic import BaseModel, Field
from typing import Optional, List


# Color tokens offered by the stage editor (Tailwind classes)
COLOR_OPTIONS = [
    {"value": "bg-yellow-200 text-yellow-800 border-yellow-300", "label": "Amarelo"},
    {"value": "bg-blue-200 text-blue-800 border-blue-300", "label": "Azul"},
    {"value": "bg-red-200 text-red-800 border-red-300", "label": "Vermelho"},
    {"value": "bg-green-200 text-green-800 border-green-300", "label": "Verde"},
    {"value": "bg-orange-200 text-orange-800 border-orange-300", "label": "Laranja"},
    {"value": "bg-purple-200 text-purple-800 border-purple-300", "label": "Roxo"},
    {"value": "bg-pink-200 text-pink-800 border-pink-300", "label": "Rosa"},
    {"value": "bg-indigo-200 text-indigo-800 border-indigo-300", "label": "Índigo"},
    {"value": "bg-gray-200 text-gray-800 border-gray-300", "label": "Cinza"},
]

DEFAULT_COLOR = COLOR_OPTIONS[0]["value"]


class Stage(BaseModel):
    """A single pipeline stage"""
    id: str
    name: str
    color: str = DEFAULT_COLOR
    order: int = Field(0, ge=0)


class StageCreate(BaseModel):
    """Append a stage to the end of the pipeline"""
    name: str = Field(..., max_length=100)
    color: Optional[str] = None


class StageUpdate(BaseModel):
    """Rename / recolor a stage"""
    name: str = Field(..., max_length=100)
    color: Optional[str] = None


class StageReorder(BaseModel):
    """Drag-and-drop move: moved stage takes the target's position"""
    moved_id: str
    target_id: str


class StageDeleteResult(BaseModel):
    """Outcome of a stage deletion"""
    stages: List[Stage]
    reassigned_deals: int = 0
    reassigned_to: Optional[str] = None


DEFAULT_STAGES: List[Stage] = [
    Stage(id="mapeada", name="Mapeada", color=COLOR_OPTIONS[0]["value"], order=0),
    Stage(id="selecionada", name="Selecionada", color=COLOR_OPTIONS[1]["value"], order=1),
    Stage(id="contatada", name="Contatada", color=COLOR_OPTIONS[2]["value"], order=2),
    Stage(id="entrevistada", name="Entrevistada", color=COLOR_OPTIONS[3]["value"], order=3),
    Stage(id="poc", name="POC", color=COLOR_OPTIONS[4]["value"], order=4),
]
