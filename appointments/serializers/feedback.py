from rest_framework import serializers


class FeedbackSerializer(serializers.Serializer):
    content = serializers.CharField(max_length=2000)
    rating = serializers.IntegerField(required=False, allow_null=True, min_value=1, max_value=5)


class FeedbackListQuerySerializer(serializers.Serializer):
    page = serializers.IntegerField(required=False, min_value=1)
    pageSize = serializers.IntegerField(required=False, min_value=1, max_value=100)
