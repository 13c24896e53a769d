"""API tests for authentication endpoints."""

from __future__ import annotations

from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from apps.users.models import User


class AuthAPITests(APITestCase):
    def test_register_returns_tokens(self) -> None:
        payload = {
            "email": "organizer@example.com",
            "password": "StrongPass123",
            "password_confirm": "StrongPass123",
            "role": "ORGANIZER",
        }

        response = self.client.post(reverse("auth:register"), payload, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertIn("tokens", response.data)
        self.assertEqual(response.data["user"]["role"], "ORGANIZER")
        self.assertTrue(User.objects.filter(email=payload["email"]).exists())

    def test_register_cannot_self_assign_admin(self) -> None:
        payload = {
            "email": "sneaky@example.com",
            "password": "StrongPass123",
            "password_confirm": "StrongPass123",
            "role": "ADMIN",
        }
        response = self.client.post(reverse("auth:register"), payload, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_login_returns_tokens(self) -> None:
        User.objects.create_user(email="explorer@example.com", password="CorrectPassword1")

        response = self.client.post(
            reverse("auth:login"),
            {"email": "explorer@example.com", "password": "CorrectPassword1"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data["user"]["role"], "EXPLORER")

        bad = self.client.post(
            reverse("auth:login"),
            {"email": "explorer@example.com", "password": "wrong"},
            format="json",
        )
        self.assertEqual(bad.status_code, status.HTTP_400_BAD_REQUEST)

    def test_protected_endpoint_requires_token(self) -> None:
        response = self.client.get(reverse("notification-list"))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
