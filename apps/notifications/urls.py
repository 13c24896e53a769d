"""URL routing for notifications."""

from django.urls import path  # type: ignore

from .views import NotificationListView, NotificationPreferenceView, NotificationStreamView

urlpatterns = [
    path('', NotificationListView.as_view(), name='notification-list'),
    path('preferences/', NotificationPreferenceView.as_view(), name='notification-preferences'),
    path('stream/', NotificationStreamView.as_view(), name='notification-stream'),
]
