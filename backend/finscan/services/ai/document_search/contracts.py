"""Document search scope contracts."""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, Strict


class SearchQueryPlan(BaseModel):
    """Structured output expected from the text-to-SQL call."""

    model_config = ConfigDict(extra="ignore", title="SearchQuery")

    sql: Annotated[str, Strict()] = Field(description="The PostgreSQL SELECT query")
    explanation: Annotated[str, Strict()] = Field(description="Brief explanation of what the query does")
