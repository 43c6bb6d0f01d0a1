"""Job, task and my-tasks commands."""

from __future__ import annotations

import datetime as dt
from typing import List, Optional

import discord
from discord import app_commands
from discord.ext import commands

from modules.crm.board_views import link, render_task_list
from modules.crm.commands import (
    PRIORITY_CHOICES,
    TASK_STATUS_CHOICES,
    CrmCog,
    choice_value,
    reply,
    require_guild,
    to_choices,
)
from modules.crm.context import CrmContext
from modules.crm.dates import format_date
from modules.crm.models import JOB_STATUSES, Task
from modules.crm.permissions import PermissionTier, require_tier

JOB_STATUS_CHOICES = [app_commands.Choice(name=s, value=s) for s in JOB_STATUSES]


def _task_summary(task: Task) -> str:
    due = f" · due {format_date(task.deadline)}" if task.deadline else ""
    return f"**{task.title}** (`{task.id}`) · {task.status}{due}"


class CrmJobs(CrmCog):
    job = app_commands.Group(name="job", description="Manage jobs")
    task = app_commands.Group(name="task", description="Manage tasks")
    mytasks = app_commands.Group(name="mytasks", description="Your assigned tasks")

    # ------------------------------------------------------------------
    # /job
    # ------------------------------------------------------------------

    @job.command(name="create", description="Create a job and its thread")
    @app_commands.describe(
        client="Client the job is for",
        deadline="e.g. 2025-12-15, Dec 15, friday, in 2 weeks",
        budget="Budget in dollars",
    )
    @app_commands.choices(priority=PRIORITY_CHOICES)
    @require_tier(PermissionTier.DATA_ONLY)
    async def job_create(
        self,
        interaction: discord.Interaction,
        client: str,
        title: str,
        description: Optional[str] = None,
        priority: Optional[app_commands.Choice[str]] = None,
        deadline: Optional[str] = None,
        budget: Optional[float] = None,
        assignee: Optional[discord.Member] = None,
    ) -> None:
        guild = require_guild(interaction)
        await interaction.response.defer(ephemeral=True, thinking=True)
        created = await self.service.create_job(
            guild,
            client,
            title=title,
            description=description or "",
            priority=choice_value(priority),
            deadline=deadline,
            budget=budget,
            assignee_id=assignee.id if assignee else None,
        )
        await reply(
            interaction,
            f"🛠️ Job created: {link(f'{created.id} — {created.title}', guild.id, created.thread_id)}",
        )

    @job.command(name="edit", description="Change a job's details")
    @app_commands.choices(priority=PRIORITY_CHOICES, status=JOB_STATUS_CHOICES)
    @require_tier(PermissionTier.DATA_ONLY)
    async def job_edit(
        self,
        interaction: discord.Interaction,
        job: str,
        title: Optional[str] = None,
        status: Optional[app_commands.Choice[str]] = None,
        description: Optional[str] = None,
        priority: Optional[app_commands.Choice[str]] = None,
        deadline: Optional[str] = None,
        budget: Optional[float] = None,
        assignee: Optional[discord.Member] = None,
        notes: Optional[str] = None,
    ) -> None:
        guild = require_guild(interaction)
        await interaction.response.defer(ephemeral=True)
        updated = await self.service.edit_job(
            guild,
            job,
            title=title,
            status=choice_value(status),
            description=description,
            priority=choice_value(priority),
            deadline=deadline,
            budget=budget,
            assignee_id=assignee.id if assignee else None,
            notes=notes,
        )
        await reply(interaction, f"✏️ Updated job `{updated.id}` ({updated.status}).")

    @job.command(name="complete", description="Mark a job completed")
    @require_tier(PermissionTier.DATA_ONLY)
    async def job_complete(self, interaction: discord.Interaction, job: str) -> None:
        guild = require_guild(interaction)
        await interaction.response.defer(ephemeral=True)
        done, pending = await self.service.complete_job(guild, job)
        message = f"✅ Job `{done.id}` completed."
        if pending:
            message += f" {pending} task(s) will be cleaned up on the next sync."
        await reply(interaction, message)

    @job_edit.autocomplete("job")
    @job_complete.autocomplete("job")
    async def job_autocomplete(
        self, interaction: discord.Interaction, current: str
    ) -> List[app_commands.Choice[str]]:
        return await self._job_choices(current)

    @job_create.autocomplete("client")
    async def job_client_autocomplete(
        self, interaction: discord.Interaction, current: str
    ) -> List[app_commands.Choice[str]]:
        return await self._client_choices(current)

    # ------------------------------------------------------------------
    # /task
    # ------------------------------------------------------------------

    @task.command(name="add", description="Add a task to an open job")
    @app_commands.choices(priority=PRIORITY_CHOICES)
    @require_tier(PermissionTier.DATA_ONLY)
    async def task_add(
        self,
        interaction: discord.Interaction,
        job: str,
        title: str,
        description: Optional[str] = None,
        deadline: Optional[str] = None,
        priority: Optional[app_commands.Choice[str]] = None,
        assignee: Optional[discord.Member] = None,
    ) -> None:
        guild = require_guild(interaction)
        await interaction.response.defer(ephemeral=True)
        created = await self.service.add_task(
            guild,
            job,
            title=title,
            description=description or "",
            deadline=deadline,
            priority=choice_value(priority),
            assignee_id=assignee.id if assignee else None,
        )
        await reply(interaction, f"📋 Task added: {_task_summary(created)}")

    @task.command(name="list", description="List open tasks")
    @app_commands.describe(job="Only tasks of this job")
    @require_tier(PermissionTier.OWN_TASKS)
    async def task_list(self, interaction: discord.Interaction, job: Optional[str] = None) -> None:
        guild = require_guild(interaction)
        await interaction.response.defer(ephemeral=True)
        tasks = await self.service.list_tasks(job_id=job)
        snapshot = await self.context.store.snapshot(fresh=False)
        title = f"📋 Tasks for {job}" if job else "📋 Open tasks"
        embed = render_task_list(tasks, snapshot, guild.id, dt.date.today(), title=title)
        await reply(interaction, embed=embed)

    @task.command(name="assign", description="Assign a task to someone")
    @require_tier(PermissionTier.DATA_ONLY)
    async def task_assign(
        self, interaction: discord.Interaction, task: str, user: discord.Member
    ) -> None:
        guild = require_guild(interaction)
        await interaction.response.defer(ephemeral=True)
        updated = await self.service.assign_task(guild, task, user.id)
        await reply(interaction, f"👤 {_task_summary(updated)} → {user.mention}")

    @task.command(name="close", description="Mark a task completed")
    @require_tier(PermissionTier.DATA_ONLY)
    async def task_close(self, interaction: discord.Interaction, task: str) -> None:
        guild = require_guild(interaction)
        await interaction.response.defer(ephemeral=True)
        updated = await self.service.set_task_status(guild, task, "completed")
        await reply(interaction, f"✅ {_task_summary(updated)}")

    @task.command(name="reopen", description="Reopen a completed task")
    @require_tier(PermissionTier.DATA_ONLY)
    async def task_reopen(self, interaction: discord.Interaction, task: str) -> None:
        guild = require_guild(interaction)
        await interaction.response.defer(ephemeral=True)
        updated = await self.service.set_task_status(guild, task, "open")
        await reply(interaction, f"🔁 {_task_summary(updated)}")

    @task.command(name="deadline", description="Set or clear a task deadline")
    @app_commands.describe(when="e.g. 2025-12-15, friday, in 3 days; leave blank to clear")
    @require_tier(PermissionTier.DATA_ONLY)
    async def task_deadline(
        self, interaction: discord.Interaction, task: str, when: Optional[str] = None
    ) -> None:
        guild = require_guild(interaction)
        await interaction.response.defer(ephemeral=True)
        updated = await self.service.set_task_deadline(guild, task, when)
        await reply(interaction, f"📅 {_task_summary(updated)}")

    @task_assign.autocomplete("task")
    @task_close.autocomplete("task")
    @task_reopen.autocomplete("task")
    @task_deadline.autocomplete("task")
    async def task_autocomplete(
        self, interaction: discord.Interaction, current: str
    ) -> List[app_commands.Choice[str]]:
        return to_choices(await self.service.suggest_tasks(current))

    @task_add.autocomplete("job")
    @task_list.autocomplete("job")
    async def task_job_autocomplete(
        self, interaction: discord.Interaction, current: str
    ) -> List[app_commands.Choice[str]]:
        return await self._job_choices(current)

    # ------------------------------------------------------------------
    # /mytasks
    # ------------------------------------------------------------------

    @mytasks.command(name="list", description="Your open tasks")
    @require_tier(PermissionTier.OWN_TASKS)
    async def mytasks_list(self, interaction: discord.Interaction) -> None:
        guild = require_guild(interaction)
        await interaction.response.defer(ephemeral=True)
        tasks = await self.service.list_tasks(assignee_id=interaction.user.id)
        snapshot = await self.context.store.snapshot(fresh=False)
        embed = render_task_list(
            tasks,
            snapshot,
            guild.id,
            dt.date.today(),
            title="📋 My tasks",
            empty="_Nothing assigned to you_",
        )
        await reply(interaction, embed=embed)

    @mytasks.command(name="update", description="Update the status of one of your tasks")
    @app_commands.choices(status=TASK_STATUS_CHOICES)
    @require_tier(PermissionTier.OWN_TASKS)
    async def mytasks_update(
        self,
        interaction: discord.Interaction,
        task: str,
        status: app_commands.Choice[str],
    ) -> None:
        guild = require_guild(interaction)
        await interaction.response.defer(ephemeral=True)
        updated = await self.service.set_task_status(
            guild, task, status.value, actor_id=interaction.user.id
        )
        await reply(interaction, f"✅ {_task_summary(updated)}")

    @mytasks_update.autocomplete("task")
    async def mytasks_autocomplete(
        self, interaction: discord.Interaction, current: str
    ) -> List[app_commands.Choice[str]]:
        return to_choices(
            await self.service.suggest_tasks(current, assignee_id=interaction.user.id)
        )


async def setup(bot: commands.Bot, context: CrmContext) -> None:
    await bot.add_cog(CrmJobs(bot, context))
