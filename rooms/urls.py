from django.urls import path
from .views import *

urlpatterns = [
    path('rooms/<str:code>/', RoomDetailView.as_view()),
    path('config/', WebRTCConfigView.as_view()),
    path('health/', HealthView.as_view()),
]
