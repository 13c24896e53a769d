"""Serializers for authentication flows (register, login)."""

from __future__ import annotations

from typing import Any

from django.contrib.auth import authenticate, get_user_model  # type: ignore
from django.db import transaction  # type: ignore
from rest_framework import serializers  # type: ignore

User = get_user_model()


class RegisterSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(min_length=8, write_only=True)
    password_confirm = serializers.CharField(min_length=8, write_only=True)
    first_name = serializers.CharField(required=False, allow_blank=True)
    last_name = serializers.CharField(required=False, allow_blank=True)
    role = serializers.ChoiceField(
        choices=[User.RoleChoices.EXPLORER, User.RoleChoices.ORGANIZER],
        default=User.RoleChoices.EXPLORER,
    )

    def validate(self, attrs: dict[str, Any]) -> dict[str, Any]:  # type: ignore
        if attrs.get("password") != attrs.get("password_confirm"):
            raise serializers.ValidationError({"password_confirm": "Пароли не совпадают."})
        if User.objects.filter(email__iexact=attrs.get("email")).exists():
            raise serializers.ValidationError({"email": "Пользователь с таким email уже существует."})
        return attrs

    @transaction.atomic
    def create(self, validated_data: dict[str, Any]):  # type: ignore
        password = validated_data.pop("password")
        validated_data.pop("password_confirm", None)
        return User.objects.create_user(password=password, **validated_data)


class LoginSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True)

    def validate(self, attrs: dict[str, Any]) -> dict[str, Any]:  # type: ignore
        user = authenticate(
            request=self.context.get("request"),
            email=attrs.get("email"),
            password=attrs.get("password"),
        )
        if user is None or not user.is_active:
            raise serializers.ValidationError("Неверный email или пароль.")
        attrs["user"] = user
        return attrs
