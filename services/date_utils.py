from datetime import date, timedelta


def last_day_of_month(d: date) -> date:
    if d.month == 12:
        first_next = date(d.year + 1, 1, 1)
    else:
        first_next = date(d.year, d.month + 1, 1)
    return first_next - timedelta(days=1)


def add_months(d: date, months: int) -> date:
    """Soma meses de calendário, limitando o dia ao fim do mês (31/01 + 1 = 28|29/02)."""
    month_index = d.month - 1 + int(months)
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    last_day = last_day_of_month(date(year, month, 1)).day
    return d.replace(year=year, month=month, day=min(d.day, last_day))
