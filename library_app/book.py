from __future__ import annotations

from typing import Any, Mapping


class Book:
    """Represents a single title in the catalog and its copy counts."""

    def __init__(self, id: int | None, title: str, author: str, publication_year: int,
                 total_copies: int, available_copies: int | None = None,
                 category: str | None = None, isbn: str | None = None,
                 shelf_number: str | None = None, image: str | None = None,
                 created_at: str | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.publication_year = publication_year
        self.total_copies = total_copies
        self.available_copies = total_copies if available_copies is None else available_copies
        self.category = category
        self.isbn = isbn
        self.shelf_number = shelf_number
        self.image = image
        self.created_at = created_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} ({self.available_copies}/{self.total_copies} available)"

    @property
    def lent_out(self) -> int:
        """Copies currently in members' hands."""
        return self.total_copies - self.available_copies

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "category": self.category,
            "isbn": self.isbn,
            "publication_year": self.publication_year,
            "total_copies": self.total_copies,
            "available_copies": self.available_copies,
            "shelf_number": self.shelf_number,
            "image": self.image,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_row(row: Mapping[str, Any]) -> "Book":
        data = dict(row)
        created_at = data.get("created_at")
        return Book(
            id=data["id"],
            title=data["title"],
            author=data["author"],
            publication_year=data["publication_year"],
            total_copies=data["total_copies"],
            available_copies=data["available_copies"],
            category=data.get("category"),
            isbn=data.get("isbn"),
            shelf_number=data.get("shelf_number"),
            image=data.get("image"),
            created_at=str(created_at) if created_at is not None else None,
        )
