from django.conf import settings
from django.shortcuts import get_object_or_404
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import Call, Member, Room
from .serializers import CallSerializer, MemberSerializer


class RoomDetailView(APIView):
    def get(self, request, code):
        room = get_object_or_404(Room, code=code)
        return Response({
            'code': room.code,
            'createdAt': room.created_at,
            'users': MemberSerializer(Member.objects.roster(room.code), many=True).data,
            'callHistory': CallSerializer(Call.objects.recent(room.code), many=True).data,
        })


class WebRTCConfigView(APIView):
    def get(self, request):
        return Response(settings.WEBRTC_CONFIG)


class HealthView(APIView):
    def get(self, request):
        return Response({'status': 'ok'})
