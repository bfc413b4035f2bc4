from rest_framework import serializers


class AvailabilityQuerySerializer(serializers.Serializer):
    doctorId = serializers.IntegerField(min_value=1)
    date = serializers.DateField()


class BookingSerializer(serializers.Serializer):
    doctorId = serializers.IntegerField(min_value=1)
    date = serializers.DateField()
    time = serializers.CharField(max_length=8)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=1000)


class RescheduleSerializer(serializers.Serializer):
    date = serializers.DateField()
    time = serializers.CharField(max_length=8)


class CancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)


class AppointmentListQuerySerializer(serializers.Serializer):
    filter = serializers.ChoiceField(choices=['upcoming', 'past', 'all'], required=False, default='all')
    page = serializers.IntegerField(required=False, min_value=1)
    pageSize = serializers.IntegerField(required=False, min_value=1, max_value=100)
