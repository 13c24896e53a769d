"""User domain models.

Каждый пользователь маркетплейса имеет одну роль: explorer бронирует
места на сессиях, organizer публикует впечатления и управляет
бронированиями, admin обслуживает платежи (возвраты, ручная оплата).
"""

from __future__ import annotations

from typing import Any

from django.contrib.auth.models import AbstractUser, BaseUserManager  # type: ignore
from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class CustomUserManager(BaseUserManager):
    """Менеджер пользователей, использующий email в качестве логина."""

    use_in_migrations = True

    def _create_user(self, email: str, password: str | None, **extra_fields: Any):
        if not email:
            raise ValueError("Email обязателен для создания пользователя.")
        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()
        user.save(using=self._db)
        return user

    def create_user(self, email: str, password: str | None = None, **extra_fields: Any):
        extra_fields.setdefault("is_staff", False)
        extra_fields.setdefault("is_superuser", False)
        extra_fields.setdefault("role", CustomUser.RoleChoices.EXPLORER)
        return self._create_user(email, password, **extra_fields)

    def create_superuser(self, email: str, password: str | None = None, **extra_fields: Any):
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)
        extra_fields.setdefault("role", CustomUser.RoleChoices.ADMIN)

        if extra_fields.get("is_staff") is not True:
            raise ValueError("Суперпользователь должен иметь is_staff=True.")
        if extra_fields.get("is_superuser") is not True:
            raise ValueError("Суперпользователь должен иметь is_superuser=True.")

        return self._create_user(email, password, **extra_fields)


class CustomUser(AbstractUser):
    """Пользователь платформы."""

    class RoleChoices(models.TextChoices):
        EXPLORER = "EXPLORER", _("Explorer")
        ORGANIZER = "ORGANIZER", _("Organizer")
        ADMIN = "ADMIN", _("Admin")

    username = models.CharField(
        _("Отображаемое имя"),
        max_length=150,
        blank=True,
    )
    email = models.EmailField(_("Email"), unique=True)
    role = models.CharField(
        _("Роль"),
        max_length=20,
        choices=RoleChoices.choices,
        default=RoleChoices.EXPLORER,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = CustomUserManager()

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS: list[str] = []

    class Meta:
        verbose_name = _("Пользователь")
        verbose_name_plural = _("Пользователи")
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.email} ({self.get_role_display()})"

    @property
    def display_name(self) -> str:
        return self.get_full_name() or self.username or self.email

    def is_explorer(self) -> bool:
        return self.role == self.RoleChoices.EXPLORER

    def is_organizer(self) -> bool:
        return self.role == self.RoleChoices.ORGANIZER

    def is_platform_admin(self) -> bool:
        return self.role == self.RoleChoices.ADMIN or self.is_superuser


User = CustomUser
