from django.db import models

from hackernews.utils import new_id


class LinkModel(models.Model):
    id = models.CharField(primary_key=True, max_length=32, default=new_id, editable=False)
    created_at = models.DateTimeField(auto_now_add=True)
    description = models.TextField()
    url = models.URLField(max_length=2048)
    # links posted before users existed have no owner
    posted_by = models.ForeignKey('users.UserModel', null=True, blank=True,
                                  on_delete=models.SET_NULL, related_name='links')

    class Meta:
        ordering = ['created_at', 'id']


class VoteModel(models.Model):
    id = models.CharField(primary_key=True, max_length=32, default=new_id, editable=False)
    user = models.ForeignKey('users.UserModel', on_delete=models.CASCADE, related_name='votes')
    link = models.ForeignKey('links.LinkModel', on_delete=models.CASCADE, related_name='votes')

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['user', 'link'], name='unique_vote_per_user_and_link'),
        ]
