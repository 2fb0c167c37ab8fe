"""
Backend applicativo per centri estetici / cliniche: prenotazione dispositivi.

Struttura:
- config.py        : Settings da variabili d'ambiente (.env)
- db.py            : Database (engine, sessioni, transazioni)
- models.py        : modelli ORM e enum
- overlap.py       : predicato di sovrapposizione intervalli
- repositories.py  : interfacce e implementazioni SQL dei repository
- devices.py       : registro dispositivi (capacità, CRUD, cancellazione a cascata)
- customers.py     : anagrafica clienti (soft delete)
- booking.py       : controllo conflitti e prenotazione transazionale
- lifecycle.py     : transizioni di stato degli appuntamenti
- agenda.py        : query di lettura (calendario, oggi, prossimi, statistiche)
- errors.py        : errori applicativi (status HTTP + codice)
- auth_*.py        : utenti, password bcrypt, token JWT
- services.py      : wiring dei servizi (costruiti una volta all'avvio)
- seed.py          : dati demo (azienda, admin, dispositivi, cliente)
- api_main.py      : API REST FastAPI + JWT
- cli.py           : simulazione applicativi esterni via CLI
"""
