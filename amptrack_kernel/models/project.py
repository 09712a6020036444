"""
Module: amptrack_kernel.models.project
Responsibility: Minimal project rows created by estimate conversion and
    their seeded organizational folders.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Project names are unique (uq_project_name).
    - Folder names are unique within a project.
"""

from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from amptrack_kernel.db.base import Base, TrackedBase, UUIDString


class Project(TrackedBase):
    """
    A job site or engagement that change orders and invoices hang off.

    Guarantees:
        - Customer fields are a snapshot, never a live join.
        - source_estimate_id records the estimate the project was promoted
          from, when there is one.
    """

    __tablename__ = "projects"

    __table_args__ = (
        UniqueConstraint("name", name="uq_project_name"),
        Index("idx_project_status", "status"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    customer_phone: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    customer_address: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    # Plain reference; documents already point at projects
    source_estimate_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    folders: Mapped[list["ProjectFolder"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="ProjectFolder.position",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Project {self.name} status={self.status}>"


class ProjectFolder(Base):
    """Named organizational folder seeded into a new project."""

    __tablename__ = "project_folders"

    __table_args__ = (
        UniqueConstraint("project_id", "name", name="uq_project_folder_name"),
    )

    project_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    project: Mapped["Project"] = relationship(back_populates="folders")

    def __repr__(self) -> str:
        return f"<ProjectFolder {self.name}>"
