from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import BookProjectViewSet, ChatThreadViewSet

router = DefaultRouter()
router.register("projects", BookProjectViewSet, basename="book-project")
router.register("threads", ChatThreadViewSet, basename="chat-thread")

urlpatterns = [
    path("", include(router.urls)),
]
