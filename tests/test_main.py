import asyncio

from budgetflow.main import Runtime, submit_for_screen
from budgetflow.services.transactions import SubmissionResult, SubmissionStatus
from budgetflow.states import events as ev
from budgetflow.states.interpreter import FlowInterpreter
from budgetflow.states.machine import FlowMachine
from budgetflow.states.screens import Screen


class FakeSubmissions:
    def __init__(self, result):
        self.result = result
        self.calls = []

    async def submit_transaction(self, kind, draft):
        self.calls.append((kind, draft.amount))
        return self.result


async def _at_confirm(submissions):
    interpreter = FlowInterpreter({}, machine=FlowMachine("EUR"))
    await interpreter.start()
    for event in (
        ev.NavigateWithdrawalAccounts(),
        ev.UpdateAccount(name="Cash", id="1", currency="EUR"),
        ev.UpdateAmount(amount="42.50"),
        ev.NavigateCategory(),
        ev.UpdateCategory(name="Food", id="3"),
        ev.UpdateCounterparty(name="Market"),
        ev.NavigateConfirm(),
    ):
        interpreter.send(event)
    await interpreter.wait_idle()
    return Runtime(interpreter, None, submissions, None, None)


def test_failed_submit_keeps_draft_and_shows_message():
    submissions = FakeSubmissions(SubmissionResult(SubmissionStatus.NETWORK_ERROR, "Request timeout after 30s"))

    async def scenario():
        runtime = await _at_confirm(submissions)
        forward = await submit_for_screen(runtime, ev.SubmitTransaction())
        return runtime.interpreter, forward

    interpreter, forward = asyncio.run(scenario())
    assert forward is False
    assert submissions.calls == [("withdrawal", "42.50")]
    assert interpreter.state == Screen.WITHDRAWAL_CONFIRM
    assert interpreter.context.draft.submit_message == "Request timeout after 30s"
    assert interpreter.context.draft.is_submitting is False


def test_successful_submit_lets_machine_return_home():
    submissions = FakeSubmissions(SubmissionResult(SubmissionStatus.SUCCESS, "Transaction saved"))

    async def scenario():
        runtime = await _at_confirm(submissions)
        if await submit_for_screen(runtime, ev.SubmitTransaction()):
            runtime.interpreter.send(ev.SubmitTransaction())
        return runtime.interpreter

    interpreter = asyncio.run(scenario())
    assert interpreter.state == Screen.HOME
    assert interpreter.context.draft.amount == ""


def test_other_events_pass_through():
    async def scenario():
        runtime = await _at_confirm(FakeSubmissions(None))
        return await submit_for_screen(runtime, ev.NavigateBack())

    assert asyncio.run(scenario()) is True
