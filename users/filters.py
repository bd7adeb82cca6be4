import django_filters

from users.models import UserModel


class UserFilterSet(django_filters.FilterSet):
    email = django_filters.CharFilter(field_name='email')

    class Meta:
        model = UserModel
        fields = ['email']
