from rest_framework import serializers


class DoctorSearchQuerySerializer(serializers.Serializer):
    specialty = serializers.CharField(required=False, allow_blank=True, max_length=100)
    location = serializers.CharField(required=False, allow_blank=True, max_length=255)
    rating = serializers.FloatField(required=False, min_value=0, max_value=5)
    q = serializers.CharField(required=False, allow_blank=True, max_length=100)
    page = serializers.IntegerField(required=False, min_value=1)
    pageSize = serializers.IntegerField(required=False, min_value=1, max_value=100)
