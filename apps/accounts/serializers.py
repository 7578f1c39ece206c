from django.contrib.auth.password_validation import validate_password
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from apps.utils.validators import validate_phone
from .models import User


class UserProfileSerializer(serializers.ModelSerializer):
    isAdmin = serializers.BooleanField(source="is_admin", read_only=True)
    fullName = serializers.CharField(source="full_name", required=False, allow_blank=True)
    phoneNumber = serializers.CharField(
        source="phone_number", required=False, allow_blank=True, validators=[validate_phone]
    )

    class Meta:
        model = User
        fields = ['id', 'email', 'fullName', 'phoneNumber', 'role', 'isAdmin']
        read_only_fields = ['id', 'email', 'role']


class RegisterSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True, min_length=8)
    fullName = serializers.CharField(max_length=255)
    phoneNumber = serializers.CharField(
        max_length=15, required=False, allow_blank=True, validators=[validate_phone]
    )

    def validate_email(self, value):
        value = value.lower()
        if User.objects.filter(email__iexact=value).exists():
            raise serializers.ValidationError("An account with this email already exists.")
        return value

    def validate_password(self, value):
        validate_password(value)
        return value

    def create(self, validated_data):
        return User.objects.create_user(
            email=validated_data["email"],
            password=validated_data["password"],
            full_name=validated_data["fullName"],
            phone_number=validated_data.get("phoneNumber", ""),
        )


class LoginSerializer(TokenObtainPairSerializer):
    """
    Email + password -> access/refresh pair, plus the profile the frontend
    keeps in its single auth store.
    """

    def validate(self, attrs):
        data = super().validate(attrs)
        data["user"] = UserProfileSerializer(self.user).data
        return data


class LogoutSerializer(serializers.Serializer):
    refresh = serializers.CharField()
