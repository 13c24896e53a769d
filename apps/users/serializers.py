"""Serializers for the users app."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from .models import CustomUser


class UserSerializer(serializers.ModelSerializer):
    class Meta:
        model = CustomUser
        fields = ["id", "email", "username", "first_name", "last_name", "role"]
        read_only_fields = fields
