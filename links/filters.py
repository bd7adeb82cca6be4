import django_filters
from django.db.models import Q, Value
from django.db.models.functions import StrIndex

from links.models import LinkModel, VoteModel


class LinkFilterSet(django_filters.FilterSet):
    """The search criteria the store accepts for links.

    'text' matches links whose description OR url contains the given string. The match is
    case-sensitive on every backend, which '__contains' is not (SQLite's LIKE ignores case), so it
    is done with StrIndex instead. Surrounding whitespace is part of the search string.
    """
    text = django_filters.CharFilter(method='filter_text', strip=False)
    posted_by = django_filters.CharFilter(field_name='posted_by_id')

    class Meta:
        model = LinkModel
        fields = ['text', 'posted_by']

    def filter_text(self, queryset, name, value):
        return queryset.alias(
            description_at=StrIndex('description', Value(value)),
            url_at=StrIndex('url', Value(value)),
        ).filter(Q(description_at__gt=0) | Q(url_at__gt=0))


class VoteFilterSet(django_filters.FilterSet):
    """Votes by link and/or user. Plain id filters rather than ModelChoiceFilters: an unknown id
    should match nothing, not invalidate the whole filter.
    """
    link = django_filters.CharFilter(field_name='link_id')
    user = django_filters.CharFilter(field_name='user_id')

    class Meta:
        model = VoteModel
        fields = ['link', 'user']
