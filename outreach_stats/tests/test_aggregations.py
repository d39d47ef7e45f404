"""
Aggregation Library 테스트
"""
import pytest

from conftest import CATALOG, NOW, make_context
from outreach_stats import aggregations
from outreach_stats.groupings import get_grouping
from outreach_stats.models import NON_RENSEIGNE, GroupCount, HumanDuration, Population


def _as_dict(groups):
    return {g.group: g.total for g in groups}


def _field(field_id):
    return next(d for d in CATALOG if d.id == field_id)


# =============================================================================
# 예시 데이터 (P1, P2 in T1 / P3 in T2)
# =============================================================================

class TestWorkedExample:

    async def test_count_created(self, store, worked_example):
        assert await aggregations.count_created(store, make_context()) == 2

    async def test_count_followed(self, store, worked_example):
        assert await aggregations.count_followed(store, make_context()) == 2

    async def test_age_groups(self, store, worked_example):
        groups = await aggregations.persons_by_age_group_count(
            store, make_context(), Population.CREATED, NOW,
        )
        assert groups == [
            GroupCount(group=NON_RENSEIGNE, total=1),
            GroupCount(group="25 - 44 ans", total=1),
        ]

    async def test_follow_duration_groups(self, store, worked_example):
        # P1 1101일, P2 959일
        groups = await aggregations.persons_by_follow_duration_count(
            store, make_context(), Population.CREATED, NOW,
        )
        assert groups == [GroupCount(group="2-5 ans", total=2)]

    async def test_average_follow_duration(self, store, worked_example):
        result = await aggregations.average_follow_duration(store, make_context(), Population.CREATED, NOW)
        assert result.days == pytest.approx(1030.0)
        assert result.human == HumanDuration(value=3, unit="ans")

    async def test_gender(self, store, worked_example):
        groups = await aggregations.persons_by_gender_count(store, make_context(), Population.CREATED)
        assert groups == [GroupCount(group="F", total=1), GroupCount(group="M", total=1)]

    async def test_empty_team_list(self, store, worked_example):
        assert await aggregations.count_persons(store, make_context(teams=())) == 0
        assert await aggregations.persons_by_gender_count(
            store, make_context(teams=()), Population.CREATED,
        ) == []

    async def test_all_time_counts_current_members(self, store, worked_example):
        context = make_context(period={"from": None, "to": None})
        assert await aggregations.count_created(store, context) == 2
        assert await aggregations.count_persons(store, context, Population.ALL) == 3


class TestWandering:

    async def test_groups_and_average(self, store, worked_example):
        worked_example.person("W1", team="T1", followed_since="2023-03-03", wanderingAt="2025-12-16")
        context = make_context()

        groups = _as_dict(await aggregations.persons_by_wandering_duration_count(
            store, context, Population.CREATED, NOW,
        ))
        assert groups == {NON_RENSEIGNE: 2, "0-6 mois": 1}

        result = await aggregations.average_wandering_duration(store, context, Population.CREATED, NOW)
        assert result.days == pytest.approx(30.0)
        assert result.human == HumanDuration(value=30, unit="jours")

    async def test_no_wanderers(self, store, worked_example):
        result = await aggregations.average_wandering_duration(store, make_context(), Population.CREATED, NOW)
        assert result.days is None
        assert result.human is None


# =============================================================================
# 활동 건수
# =============================================================================

@pytest.fixture()
def activity_snapshot(worked_example):
    s = worked_example
    s.action("A1", "P1", teams=("T2",), due_at="2023-03-01")
    s.action("A2", "P3", teams=("T1",), due_at="2023-04-01")
    s.action("A3", "P2", due_at="2023-05-01", deleted_at="2023-05-02")
    s.action("A4", "P2", due_at="2022-05-01")
    s.action("A5", "P3", completed_at="2023-11-01")

    s.consultation("C1", "P1", teams=("T1",), due_at="2023-02-01")
    s.consultation("C2", "P2", teams=("T2",), due_at="2023-03-01")
    s.consultation("C3", "P2", teams=("T1", "T2"), due_at="2023-07-01", deleted_at="2023-07-02")
    s.consultation("C4", "P3", teams=("T1",), due_at="2021-01-01")

    s.activity("passage", "PA1", "P1", date="2023-02-02")
    s.activity("passage", "PA2", "P1", date="2023-03-03")
    s.activity("passage", "PA3", "P3", date="2023-04-04", team_id="T2")
    s.activity("passage", "PA4", "P2", date="2024-01-05")

    s.activity("rencontre", "R1", "P2", date="2023-09-09")
    return s


class TestActivityCounts:

    async def test_actions_by_activity_team(self, store, activity_snapshot):
        # A1: person T1 이지만 action 팀 T2 → 제외 / A2: person T2, action 팀 T1 → 포함
        assert await aggregations.count_actions(store, make_context()) == 2

    async def test_actions_all_time(self, store, activity_snapshot):
        context = make_context(period={"from": None, "to": None})
        assert await aggregations.count_actions(store, context) == 3

    async def test_consultations(self, store, activity_snapshot):
        assert await aggregations.count_consultations(store, make_context()) == 1
        assert await aggregations.count_consultations(store, make_context(teams=("T2",))) == 1

    async def test_passages_and_encounters(self, store, activity_snapshot):
        assert await aggregations.count_passages(store, make_context()) == 2
        assert await aggregations.count_encounters(store, make_context()) == 1

    async def test_filters_restrict_activities(self, store, activity_snapshot):
        women = make_context(filters=[{"id": "gender", "value": ["F"]}])
        men = make_context(filters=[{"id": "gender", "value": ["M"]}])
        assert await aggregations.count_encounters(store, women) == 1
        assert await aggregations.count_encounters(store, men) == 0
        assert await aggregations.count_passages(store, men) == 2

    async def test_unknown_kind(self, store, activity_snapshot):
        with pytest.raises(ValueError, match="Unknown activity kind"):
            await aggregations.count_activities(store, make_context(), "visits")

    async def test_persons_with_action(self, store, activity_snapshot):
        # P2: 삭제된 action + 기간 밖 action뿐
        assert await aggregations.count_persons_with_action(store, make_context()) == 1

    async def test_persons_with_consultation(self, store, activity_snapshot):
        assert await aggregations.count_persons_with_consultation(store, make_context()) == 2


# =============================================================================
# file active / 취약 인원
# =============================================================================

@pytest.fixture()
def active_list_snapshot(snapshot):
    snapshot.person("O1", team="T1", followed_since="2023-01-01", outOfActiveList=1,
                    outOfActiveListDate="2023-06-01", outOfActiveListReasons=["Décès"])
    snapshot.person("O2", team="T1", followed_since="2023-02-01", outOfActiveList=1,
                    outOfActiveListReasons=["Relogement", "Décès"])
    snapshot.person("O3", team="T1", followed_since="2023-03-01", outOfActiveList=0)
    snapshot.person("V1", team="T1", followed_since="2023-04-01", alertness=1)
    return snapshot


class TestActiveList:

    async def test_out_of_active_list(self, store, active_list_snapshot):
        assert await aggregations.count_out_of_active_list(store, make_context()) == 2

    async def test_vulnerable(self, store, active_list_snapshot):
        assert await aggregations.count_vulnerable(store, make_context()) == 1

    async def test_reasons(self, store, active_list_snapshot):
        groups = await aggregations.persons_by_out_of_active_list_reason_count(store, make_context())
        assert groups == [
            GroupCount(group="Décès", total=2),
            GroupCount(group=NON_RENSEIGNE, total=2),
            GroupCount(group="Relogement", total=1),
        ]

    async def test_follow_duration_stops_at_exit_date(self, store, active_list_snapshot):
        context = make_context(filters=[{"id": "gender", "value": ["Non renseigné"]}])
        groups = _as_dict(await aggregations.persons_by_follow_duration_count(
            store, context, Population.CREATED, NOW,
        ))
        # O1: 2023-01-01 → 2023-06-01 (151일)
        assert groups["0-6 mois"] == 1
        assert sum(groups.values()) == 4


# =============================================================================
# 커스텀 필드
# =============================================================================

@pytest.fixture()
def field_snapshot(snapshot):
    snapshot.person("F1", team="T1", followed_since="2023-01-01", **{
        "custom-first-contact-age": 30, "custom-housing": "Rue", "custom-has-dog": 1,
        "custom-rsa": 1, "custom-languages": ["fr", "en"], "custom-last-visit": "2025-12-16",
    })
    snapshot.person("F2", team="T1", followed_since="2023-02-01", **{
        "custom-first-contact-age": 41, "custom-housing": "Foyer", "custom-has-dog": 0,
        "custom-languages": ["fr"], "custom-last-visit": "2025-11-16",
    })
    snapshot.person("F3", team="T1", followed_since="2023-03-01", **{
        "custom-housing": "Rue", "custom-languages": [],
    })
    snapshot.person("F4", team="T1", followed_since="2023-04-01")
    return snapshot


class TestCustomFields:

    async def test_number_field(self, store, field_snapshot):
        stats = await aggregations.number_field_stats(
            store, make_context(), Population.CREATED, _field("custom-first-contact-age"),
        )
        assert stats.total == 2
        assert stats.average == pytest.approx(35.5)

    async def test_number_field_empty_population(self, store, field_snapshot):
        stats = await aggregations.number_field_stats(
            store, make_context(teams=("T9",)), Population.CREATED, _field("custom-first-contact-age"),
        )
        assert stats.total == 0
        assert stats.average is None

    async def test_date_field_average(self, store, field_snapshot):
        result = await aggregations.average_date_field(
            store, make_context(), Population.CREATED, _field("custom-last-visit"), NOW,
        )
        assert result.days == pytest.approx(45.0)
        assert result.human == HumanDuration(value=45, unit="jours")

    async def test_yes_no_field_ordered(self, store, field_snapshot):
        groups = await aggregations.persons_by_field_count(
            store, make_context(), Population.CREATED, _field("custom-has-dog"),
        )
        assert groups == [
            GroupCount(group="Oui", total=1),
            GroupCount(group="Non", total=1),
            GroupCount(group=NON_RENSEIGNE, total=2),
        ]

    async def test_boolean_field(self, store, field_snapshot):
        groups = await aggregations.persons_by_field_count(
            store, make_context(), Population.CREATED, _field("custom-rsa"),
        )
        assert _as_dict(groups) == {"Oui": 1, NON_RENSEIGNE: 3}

    async def test_enum_field_sorted_by_total(self, store, field_snapshot):
        groups = await aggregations.persons_by_field_count(
            store, make_context(), Population.CREATED, _field("custom-housing"),
        )
        assert groups == [
            GroupCount(group="Rue", total=2),
            GroupCount(group="Foyer", total=1),
            GroupCount(group=NON_RENSEIGNE, total=1),
        ]

    async def test_choice_field(self, store, field_snapshot):
        groups = await aggregations.persons_by_choice_field_count(
            store, make_context(), Population.CREATED, _field("custom-languages"),
        )
        assert _as_dict(groups) == {"fr": 2, "en": 1, NON_RENSEIGNE: 2}

    async def test_filter_and_grouping_combined(self, store, field_snapshot):
        context = make_context(filters=[{"id": "custom-housing", "value": ["Rue"]}])
        groups = await aggregations.persons_by_choice_field_count(
            store, context, Population.CREATED, _field("custom-languages"),
        )
        assert _as_dict(groups) == {"fr": 1, "en": 1, NON_RENSEIGNE: 1}


class TestGetGrouping:

    def test_named(self):
        assert get_grouping("age_group").name == "age_group"

    def test_field_requires_definition(self):
        with pytest.raises(ValueError, match="requires a field"):
            get_grouping("field")

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown grouping"):
            get_grouping("zodiac")

    def test_choice_is_multi_valued(self):
        assert get_grouping("choice", _field("custom-languages")).multi_valued


# =============================================================================
# action 카테고리
# =============================================================================

@pytest.fixture()
def category_snapshot(worked_example):
    s = worked_example
    s.action("A1", "P1", due_at="2023-02-01", categories=["Soin"], status="FAIT")
    s.action("A2", "P1", due_at="2023-03-01", categories=["Soin", "Hébergement"])
    s.action("A3", "P2", due_at="2023-04-01", categories=[])
    s.action("A4", "P2", due_at="2023-04-02", categories=["Soin"], deleted_at="2023-04-03")
    s.action("A5", "P2", teams=("T2",), due_at="2023-04-04", categories=["Soin"])
    return s


class TestActionCategories:

    async def test_actions_by_category(self, store, category_snapshot):
        groups = await aggregations.actions_by_category_count(store, make_context())
        assert groups == [
            GroupCount(group="Soin", total=2),
            GroupCount(group="Hébergement", total=1),
            GroupCount(group=NON_RENSEIGNE, total=1),
        ]

    async def test_persons_by_category(self, store, category_snapshot):
        groups = await aggregations.persons_by_action_category_count(store, make_context())
        assert _as_dict(groups) == {"Soin": 1, "Hébergement": 1, NON_RENSEIGNE: 1}

    async def test_category_filter(self, store, category_snapshot):
        groups = await aggregations.actions_by_category_count(store, make_context(), categories=["Soin"])
        assert groups == [GroupCount(group="Soin", total=2)]

    async def test_status_filter(self, store, category_snapshot):
        groups = await aggregations.actions_by_category_count(store, make_context(), statuses=["FAIT"])
        assert groups == [GroupCount(group="Soin", total=1)]
