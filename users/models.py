from django.db import models

from hackernews.utils import new_id


# Not Django's own User: the API wants a 'name' rather than a 'username', and nothing here needs
# Django's permissions or sessions. The password is only ever stored as a salted hash (see
# users.auth.hash_password); identity is proved with a signed bearer token rather than a stored
# one.

class UserModel(models.Model):
    id = models.CharField(primary_key=True, max_length=32, default=new_id, editable=False)
    name = models.CharField(max_length=150)
    email = models.EmailField(unique=True)
    password = models.CharField(max_length=128)
