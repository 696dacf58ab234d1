"""Saved query (query view) models."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel


class QueryView(BaseModel):
    """Parameterized SQL text bound to a connection target.

    Attributes:
        name: Display name
        sql_query: SQL text; parameter names are substituted literally
        connection_string: SQLAlchemy URL of the database the query runs against
        last_executed: Updated every time an ExecuteQuery step runs it
    """

    __tablename__ = "query_views"

    name: Mapped[str] = mapped_column(nullable=False, index=True)
    description: Mapped[str] = mapped_column(nullable=False, default="")
    sql_query: Mapped[str] = mapped_column(Text, nullable=False)
    connection_string: Mapped[str] = mapped_column(nullable=False)
    last_executed: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    parameters: Mapped[list["QueryParameter"]] = relationship(
        "QueryParameter",
        back_populates="query_view",
        cascade="all, delete-orphan",
        order_by="QueryParameter.id",
        lazy="selectin",
    )


class QueryParameter(BaseModel):
    """Named placeholder of a query view, e.g. ``@StartDate``."""

    __tablename__ = "query_parameters"

    query_view_id: Mapped[int] = mapped_column(
        ForeignKey("query_views.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(nullable=False)
    data_type: Mapped[str] = mapped_column(nullable=False, default="string")
    default_value: Mapped[Optional[str]] = mapped_column(nullable=True)

    query_view: Mapped["QueryView"] = relationship("QueryView", back_populates="parameters")
