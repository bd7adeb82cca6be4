import django.db.models.deletion
from django.db import migrations, models

import hackernews.utils


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('users', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='LinkModel',
            fields=[
                ('id', models.CharField(default=hackernews.utils.new_id, editable=False, max_length=32, primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('description', models.TextField()),
                ('url', models.URLField(max_length=2048)),
                ('posted_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='links', to='users.usermodel')),
            ],
            options={
                'ordering': ['created_at', 'id'],
            },
        ),
        migrations.CreateModel(
            name='VoteModel',
            fields=[
                ('id', models.CharField(default=hackernews.utils.new_id, editable=False, max_length=32, primary_key=True, serialize=False)),
                ('link', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='votes', to='links.linkmodel')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='votes', to='users.usermodel')),
            ],
            options={
                'constraints': [models.UniqueConstraint(fields=('user', 'link'), name='unique_vote_per_user_and_link')],
            },
        ),
    ]
