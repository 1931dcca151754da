import asyncio

import pytest

from photo_studio.errors import RemoteError
from photo_studio.session.edit_session import EditSession
from photo_studio.session.models import Flow, ImageState, Outcome, SessionState

from conftest import Gate, default_suggestions, settle

SOURCE = ImageState(b"source", "image/jpeg")


def make_session(service, **kwargs) -> EditSession:
    kwargs.setdefault("live_typing", False)
    return EditSession(service, session_id="test", **kwargs)


async def loaded_session(service, **kwargs) -> EditSession:
    session = make_session(service, **kwargs)
    await session.select_image(SOURCE)
    return session


class TestSelectImage:
    def test_loads_history_analysis_and_suggestions(self, service):
        session = asyncio.run(loaded_session(service))
        assert session.state == SessionState.LOADED
        assert session.current_image == SOURCE
        assert session.history_position == 0
        assert not session.can_undo and not session.can_redo
        assert session.analysis == "A quiet harbor at dawn"
        assert session.live_suggestions == default_suggestions()
        assert session.errors == {}
        assert service.calls_for("analyze_and_suggest") == [(SOURCE, [])]

    def test_accepts_raw_upload_bytes(self, service, png_bytes):
        async def scenario():
            session = make_session(service)
            result = await session.select_image(png_bytes)
            return session, result

        session, result = asyncio.run(scenario())
        assert result.success
        assert session.current_image.mime_type == "image/png"

    def test_rejects_unreadable_upload(self, service):
        async def scenario():
            session = make_session(service)
            return session, await session.select_image(b"not an image")

        session, result = asyncio.run(scenario())
        assert result.outcome == Outcome.REJECTED
        assert result.error_kind == "invalid_request"
        assert session.state == SessionState.EMPTY
        assert service.calls == []

    def test_analysis_failure_does_not_block_suggestions(self, service):
        service.queue("analyze_image", RemoteError("analysis down"))
        session = asyncio.run(loaded_session(service))
        assert session.live_suggestions == default_suggestions()
        assert session.errors == {"analysis": "analysis down"}
        # falls back to the analysis that came with the suggestions
        assert session.analysis == "Harbor photo, slightly underexposed"

    def test_suggestion_failure_does_not_block_analysis(self, service):
        service.queue("analyze_and_suggest", RemoteError("suggestions down"))
        session = asyncio.run(loaded_session(service))
        assert session.analysis == "A quiet harbor at dawn"
        assert session.live_suggestions == []
        assert session.errors == {"suggestions": "suggestions down"}

    @pytest.mark.parametrize("analysis_first", [True, False])
    def test_dedicated_analysis_wins_regardless_of_order(self, service, analysis_first):
        async def scenario():
            analysis_gate, suggest_gate = Gate(), Gate()
            service.queue("analyze_image", analysis_gate)
            service.queue("analyze_and_suggest", suggest_gate)
            session = make_session(service)
            task = asyncio.ensure_future(session.select_image(SOURCE))
            await settle()
            releases = [lambda: analysis_gate.resolve("dedicated"), lambda: suggest_gate.resolve(("bundled", ["one"]))]
            if not analysis_first:
                releases.reverse()
            for release in releases:
                release()
                await settle()
            await task
            return session.analysis

        assert asyncio.run(scenario()) == "dedicated"

    def test_new_image_discards_history_and_dismissals(self, service):
        async def scenario():
            session = await loaded_session(service)
            await session.apply_edit("brighten")
            await session.dismiss_suggestion("suggestion 0")
            session.type_prompt("brighter")
            await session.select_image(ImageState(b"second"))
            return session

        session = asyncio.run(scenario())
        assert session.history.states == (ImageState(b"second"),)
        assert session.dismissed_suggestions == []
        assert session.prompt == ""

    def test_stale_suggestions_for_previous_image_are_dropped(self, service):
        async def scenario():
            gate = Gate()
            service.queue("analyze_and_suggest", gate)
            session = make_session(service)
            first = asyncio.ensure_future(session.select_image(SOURCE))
            await settle()
            await session.select_image(ImageState(b"second"))
            gate.resolve(("old analysis", ["old suggestion"]))
            await first
            return session

        session = asyncio.run(scenario())
        assert session.live_suggestions == default_suggestions()
        assert session.analysis == "A quiet harbor at dawn"


class TestApplyEdit:
    def test_requires_image(self, service):
        async def scenario():
            session = make_session(service)
            return await session.apply_edit("make it pop")

        result = asyncio.run(scenario())
        assert result.outcome == Outcome.REJECTED
        assert result.error_kind == "invalid_request"
        assert service.calls == []

    def test_requires_prompt(self, service):
        async def scenario():
            session = await loaded_session(service)
            calls_before = len(service.calls)
            result = await session.apply_edit("   ")
            return result, calls_before

        result, calls_before = asyncio.run(scenario())
        assert result.error_kind == "invalid_request"
        assert len(service.calls) == calls_before

    def test_uses_session_prompt_by_default(self, service):
        async def scenario():
            session = await loaded_session(service)
            session.type_prompt("warmer tones")
            await session.apply_edit()
            return session

        session = asyncio.run(scenario())
        assert service.calls_for("edit_image") == [(SOURCE, "warmer tones")]
        assert session.current_image == ImageState(b"edited-1")

    def test_success_appends_to_history(self, service):
        async def scenario():
            session = await loaded_session(service)
            await session.apply_edit("step one")
            await session.apply_edit("step two")
            return session

        session = asyncio.run(scenario())
        assert len(session.history) == 3
        assert session.history_position == 2
        assert session.can_undo
        # second edit builds on the first result
        assert service.calls_for("edit_image")[1] == (ImageState(b"edited-1"), "step two")

    def test_edit_after_undo_branches(self, service):
        async def scenario():
            session = await loaded_session(service)
            await session.apply_edit("one")
            await session.apply_edit("two")
            session.undo()
            session.undo()
            await session.apply_edit("three")
            return session

        session = asyncio.run(scenario())
        assert session.history.states == (SOURCE, ImageState(b"edited-3"))
        assert not session.can_redo

    def test_concurrent_edit_rejected_until_first_settles(self, service):
        async def scenario():
            gate = Gate()
            service.queue("edit_image", gate)
            session = await loaded_session(service)

            first = asyncio.ensure_future(session.apply_edit("first"))
            await settle()
            assert session.busy
            assert session.state == SessionState.EDITING
            second = await session.apply_edit("second")

            gate.fail(RemoteError("model overloaded"))
            first_result = await first
            third = await session.apply_edit("third")
            return session, first_result, second, third

        session, first_result, second, third = asyncio.run(scenario())
        assert second.outcome == Outcome.REJECTED
        assert second.error_kind == "invalid_request"
        assert first_result.outcome == Outcome.FAILED
        assert third.success
        assert not session.busy
        assert len(service.calls_for("edit_image")) == 2

    def test_failure_keeps_history_and_records_error(self, service):
        async def scenario():
            service.queue("edit_image", RemoteError("no image returned"))
            session = await loaded_session(service)
            result = await session.apply_edit("oops")
            return session, result

        session, result = asyncio.run(scenario())
        assert result.error_kind == "remote_error"
        assert session.history.states == (SOURCE,)
        assert session.errors["edit"] == "no image returned"
        assert session.live_suggestions == default_suggestions()

    def test_result_for_replaced_image_is_dropped(self, service):
        async def scenario():
            gate = Gate()
            service.queue("edit_image", gate)
            session = await loaded_session(service)
            edit = asyncio.ensure_future(session.apply_edit("slow edit"))
            await settle()
            await session.select_image(ImageState(b"second"))
            gate.resolve(ImageState(b"late"))
            return session, await edit

        session, result = asyncio.run(scenario())
        assert result.outcome == Outcome.STALE
        assert session.history.states == (ImageState(b"second"),)

    def test_undo_redo_always_succeed(self, service):
        session = make_session(service)
        assert session.undo().success
        assert session.redo().success
        assert session.history_position == -1


class TestPromptAndSuggestions:
    def test_accept_suggestion_composes_prompt(self, service):
        session = make_session(service)
        session.accept_suggestion("golden hour light")
        assert session.prompt == "golden hour light"
        session.prompt = "a castle  "
        session.accept_suggestion("misty hills")
        assert session.prompt == "a castle, misty hills"
        assert session.visible_suggestions == []

    def test_type_prompt_filters_locally(self, service):
        async def scenario():
            session = await loaded_session(service)
            calls_before = len(service.calls)
            matches = session.type_prompt("suggestion 1")
            return matches, len(service.calls) - calls_before

        matches, new_calls = asyncio.run(scenario())
        assert matches == ["suggestion 0", "suggestion 1", "suggestion 2", "suggestion 3", "suggestion 4"]
        assert new_calls == 0

    def test_type_prompt_live_fetch_is_debounced(self, service):
        async def scenario():
            session = make_session(service, live_typing=True, debounce_seconds=0.05)
            session.type_prompt("a fox")
            session.type_prompt("a fox in snow")
            await session.suggestions.debouncer.join()
            return session

        session = asyncio.run(scenario())
        assert service.calls_for("suggest_many") == [("a fox in snow",)]
        assert session.live_suggestions[0] == "a fox in snow idea 0"

    def test_live_typing_failure_is_reported(self, service):
        async def scenario():
            service.queue("suggest_many", RemoteError("quota"))
            session = make_session(service, live_typing=True, debounce_seconds=0.01)
            session.type_prompt("a fox")
            await session.suggestions.debouncer.join()
            return session

        session = asyncio.run(scenario())
        assert session.errors == {"typing": "quota"}

    def test_clearing_text_clears_live_suggestions(self, service):
        async def scenario():
            session = await loaded_session(service, live_typing=True, debounce_seconds=0.05)
            session.type_prompt("")
            await asyncio.sleep(0.08)
            return session

        session = asyncio.run(scenario())
        assert session.live_suggestions == []
        assert service.calls_for("suggest_many") == []

    def test_dismiss_tops_up_with_exclusions(self, service):
        async def scenario():
            session = await loaded_session(service)
            session.type_prompt("harbor")
            return session, await session.dismiss_suggestion("suggestion 3")

        session, result = asyncio.run(scenario())
        assert result.outcome == Outcome.APPLIED
        prompt, exclude = service.calls_for("suggest_one")[0]
        assert prompt == "harbor"
        expected = [s for s in default_suggestions() if s != "suggestion 3"] + ["suggestion 3"]
        assert exclude == expected
        assert session.live_suggestions[-1] == "add a rainbow"
        assert "suggestion 3" not in session.live_suggestions
        assert session.dismissed_suggestions == ["suggestion 3"]

    def test_dismiss_uses_analysis_when_prompt_empty(self, service):
        async def scenario():
            session = await loaded_session(service)
            await session.dismiss_suggestion("suggestion 0")

        asyncio.run(scenario())
        assert service.calls_for("suggest_one")[0][0] == "A quiet harbor at dawn"

    def test_dismiss_collision_is_not_retried(self, service):
        async def scenario():
            service.queue("suggest_one", "suggestion 5")
            session = await loaded_session(service)
            result = await session.dismiss_suggestion("suggestion 0")
            return session, result

        session, result = asyncio.run(scenario())
        assert result.outcome == Outcome.SKIPPED
        assert len(service.calls_for("suggest_one")) == 1
        assert len(session.live_suggestions) == 15

    def test_dismiss_top_up_failure_keeps_state(self, service):
        async def scenario():
            service.queue("suggest_one", RemoteError("timeout"))
            session = await loaded_session(service)
            result = await session.dismiss_suggestion("suggestion 0")
            return session, result

        session, result = asyncio.run(scenario())
        assert result.outcome == Outcome.FAILED
        assert session.errors == {"top_up": "timeout"}
        assert len(session.live_suggestions) == 15

    def test_dismissed_suggestion_never_returns_via_top_up(self, service):
        async def scenario():
            service.queue("suggest_one", "suggestion 0")
            session = await loaded_session(service)
            await session.dismiss_suggestion("suggestion 0")
            await session.dismiss_suggestion("suggestion 0")
            return session

        session = asyncio.run(scenario())
        assert "suggestion 0" not in session.live_suggestions
        assert session.dismissed_suggestions == ["suggestion 0"]

    def test_repeated_dismiss_does_not_top_up_again(self, service):
        async def scenario():
            service.queue("suggest_one", "another idea", "one more idea")
            session = await loaded_session(service)
            first = await session.dismiss_suggestion("suggestion 0")
            second = await session.dismiss_suggestion("suggestion 0")
            return session, first, second

        session, first, second = asyncio.run(scenario())
        assert first.outcome == Outcome.APPLIED
        assert second.outcome == Outcome.SKIPPED
        assert len(service.calls_for("suggest_one")) == 1
        assert len(session.live_suggestions) == 16
        assert "one more idea" not in session.live_suggestions

    def test_refresh_keeps_dismissed_suggestion_out(self, service):
        async def scenario():
            session = await loaded_session(service)
            await session.dismiss_suggestion("suggestion 0")
            result = await session.refresh_suggestions()
            return session, result

        session, result = asyncio.run(scenario())
        assert result.success
        assert "suggestion 0" not in session.live_suggestions
        assert session.live_suggestions == default_suggestions()[1:]

    def test_live_typing_replaces_image_suggestions(self, service):
        async def scenario():
            session = await loaded_session(service, live_typing=True, debounce_seconds=0.01)
            session.type_prompt("harbor")
            await session.suggestions.debouncer.join()
            return session

        session = asyncio.run(scenario())
        assert service.calls_for("suggest_many") == [("harbor",)]
        assert session.live_suggestions[0] == "harbor idea 0"
        assert session.dismissed_suggestions == []

    def test_refresh_with_image_excludes_current_suggestions(self, service):
        async def scenario():
            session = await loaded_session(service)
            await session.dismiss_suggestion("suggestion 0")
            service.queue("analyze_and_suggest", ("fresh", ["new one", "new two"]))
            result = await session.refresh_suggestions()
            return session, result

        session, result = asyncio.run(scenario())
        assert result.success
        _, exclude = service.calls_for("analyze_and_suggest")[-1]
        assert "suggestion 1" in exclude and "suggestion 0" in exclude
        assert session.live_suggestions == ["new one", "new two"]

    def test_refresh_without_image_uses_prompt(self, service):
        async def scenario():
            session = make_session(service)
            empty = await session.refresh_suggestions()
            session.prompt = "a red kite"
            result = await session.refresh_suggestions()
            return session, empty, result

        session, empty, result = asyncio.run(scenario())
        assert empty.error_kind == "invalid_request"
        assert result.success
        assert session.live_suggestions[0] == "a red kite idea 0"

    def test_apply_preset(self, service):
        session = make_session(service)
        result = session.apply_preset("drone perspective")
        assert result.success
        assert session.prompt == "Change the angle to a top-down angle"
        assert session.apply_preset("nope").error_kind == "invalid_request"

    def test_random_prompt_replaces_prompt(self, service):
        async def scenario():
            session = await loaded_session(service)
            session.prompt = "old"
            return session, await session.random_prompt()

        session, result = asyncio.run(scenario())
        assert result.success
        assert session.prompt == "a lighthouse in a storm, cinematic"
        assert session.live_suggestions == []
        assert session.visible_suggestions == []


class TestGenerate:
    def test_generate_keeps_result(self, service):
        async def scenario():
            session = make_session(service)
            result = await session.generate_image("a fox", "16:9")
            return session, result

        session, result = asyncio.run(scenario())
        assert result.success
        assert session.last_generated == ImageState(b"generated")
        assert session.state == SessionState.EMPTY
        assert service.calls_for("generate_from_text") == [("a fox", "16:9")]

    def test_generate_and_load(self, service):
        async def scenario():
            session = make_session(service)
            await session.generate_image("a fox", "1:1", load=True)
            return session

        session = asyncio.run(scenario())
        assert session.current_image == ImageState(b"generated")
        assert session.live_suggestions == default_suggestions()

    def test_generate_validates_input(self, service):
        async def scenario():
            session = make_session(service)
            return await session.generate_image("", "1:1"), await session.generate_image("a fox", "2:1")

        blank, ratio = asyncio.run(scenario())
        assert blank.error_kind == "invalid_request"
        assert ratio.error_kind == "invalid_request"
        assert service.calls == []

    def test_generate_failure(self, service):
        async def scenario():
            service.queue("generate_from_text", RemoteError("no image"))
            session = make_session(service)
            return session, await session.generate_image("a fox")

        session, result = asyncio.run(scenario())
        assert result.outcome == Outcome.FAILED
        assert session.last_error(Flow.GENERATE) == "no image"


def test_snapshot_reflects_session(service):
    async def scenario():
        session = await loaded_session(service)
        await session.apply_edit("sharpen")
        session.undo()
        session.type_prompt("suggestion 7")
        return session.snapshot()

    snapshot = asyncio.run(scenario())
    assert snapshot.state == SessionState.LOADED
    assert snapshot.has_image
    assert snapshot.history_length == 2
    assert snapshot.history_position == 0
    assert snapshot.can_redo and not snapshot.can_undo
    assert snapshot.visible_suggestions == default_suggestions()[:5]
    assert len(snapshot.live_suggestions) == 16


def test_close_cancels_pending_typing(service):
    async def scenario():
        session = make_session(service, live_typing=True, debounce_seconds=0.05)
        session.type_prompt("a fox")
        session.close()
        await asyncio.sleep(0.08)

    asyncio.run(scenario())
    assert service.calls_for("suggest_many") == []
