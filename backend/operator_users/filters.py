import django_filters as filters
from django.contrib.auth import get_user_model
from django.db.models import Q

from operator_users.models import Appeal

User = get_user_model()


class OperatorUserFilter(filters.FilterSet):
    email = filters.CharFilter(field_name="email", lookup_expr="icontains")
    name = filters.CharFilter(method="filter_name")
    is_active = filters.BooleanFilter(field_name="is_active")
    suspended = filters.BooleanFilter(method="filter_suspended")
    banned = filters.BooleanFilter(method="filter_banned")

    class Meta:
        model = User
        fields = ["email", "name", "is_active", "suspended", "banned"]

    def filter_name(self, queryset, name, value):
        if not value:
            return queryset
        return queryset.filter(
            Q(first_name__icontains=value)
            | Q(last_name__icontains=value)
            | Q(username__icontains=value)
        )

    def filter_suspended(self, queryset, name, value):
        if value is None:
            return queryset
        suspended = Q(guest_profile__suspension_level__isnull=False) | Q(
            host_profile__suspension_level__isnull=False
        )
        return queryset.filter(suspended) if value else queryset.exclude(suspended)

    def filter_banned(self, queryset, name, value):
        if value is None:
            return queryset
        banned = Q(guest_profile__suspension_level="BANNED") | Q(host_profile__suspension_level="BANNED")
        return queryset.filter(banned) if value else queryset.exclude(banned)


class AppealFilter(filters.FilterSet):
    status = filters.ChoiceFilter(choices=Appeal.Status.choices)
    user_id = filters.NumberFilter(field_name="user_id")

    class Meta:
        model = Appeal
        fields = ["status", "user_id"]
